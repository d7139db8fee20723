"""Source loaders — thin wrappers around LangChain document loaders."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

from langchain_community.document_loaders import DirectoryLoader, TextLoader
from langchain_community.document_loaders.helpers import detect_file_encodings
from langchain_core.documents import Document

from codebase_rag.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Metadata key set on the placeholder document of a file that could not be read.
ERROR_KEY = "error"


class SourceFileLoader(TextLoader):
    """``TextLoader`` that keeps line endings and flags unreadable files.

    The file is decoded from raw bytes, so ``\\r\\n`` line endings reach the
    chunker unchanged.  When the configured encoding fails and
    ``autodetect_encoding`` is set, the encodings guessed by
    :func:`detect_file_encodings` are tried in order.  A file that still
    cannot be read yields one empty document carrying the reason under
    ``metadata["error"]`` instead of failing the whole directory load.
    """

    def lazy_load(self) -> Iterator[Document]:
        path = Path(self.file_path)
        try:
            text = self._decode(path.read_bytes())
        except (OSError, ValueError, RuntimeError) as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            yield Document(page_content="", metadata={"source": str(path), ERROR_KEY: str(exc)})
            return
        yield Document(page_content=text, metadata={"source": str(path)})

    def _decode(self, raw: bytes) -> str:
        encoding = self.encoding or "utf-8"
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            if not self.autodetect_encoding:
                raise

        for candidate in detect_file_encodings(self.file_path):
            try:
                text = raw.decode(candidate.encoding)
            except UnicodeDecodeError:
                continue
            logger.info("Decoded %s as %s", self.file_path, candidate.encoding)
            return text
        raise ValueError(f"not valid {encoding} and no detected encoding fits")


def load_directory(
    path: str | Path,
    glob: str = "**/*.cs",
    *,
    encoding: str = "utf-8",
    autodetect_encoding: bool = True,
) -> list[Document]:
    """Recursively load every source file under *path* matching *glob*.

    The ``source`` metadata of each document is rewritten to the file's
    path relative to *path*, in POSIX form, so chunk ids do not depend on
    where the checkout lives.  Documents come back sorted by that path.
    Unreadable files are included as empty documents flagged with
    ``metadata["error"]`` (see :class:`SourceFileLoader`).

    Raises
    ------
    ConfigurationError
        When *path* is not an existing directory.
    """
    root = Path(path)
    if not root.is_dir():
        raise ConfigurationError(f"Source root {str(root)!r} is not a directory")

    loader = DirectoryLoader(
        str(root),
        glob=glob,
        loader_cls=SourceFileLoader,  # type: ignore[arg-type]
        loader_kwargs={"encoding": encoding, "autodetect_encoding": autodetect_encoding},
        show_progress=False,
        use_multithreading=False,
    )
    documents = loader.load()
    for doc in documents:
        source = Path(doc.metadata.get("source", ""))
        try:
            doc.metadata["source"] = source.relative_to(root).as_posix()
        except ValueError:
            doc.metadata["source"] = source.as_posix()
    documents.sort(key=lambda d: d.metadata["source"])

    logger.info("Loaded %d source file(s) from %s (glob=%s)", len(documents), root, glob)
    return documents


def scan_sources(
    path: str | Path,
    glob: str = "**/*.cs",
    *,
    encoding: str = "utf-8",
    autodetect_encoding: bool = True,
) -> tuple[list[tuple[str, str]], dict[str, str]]:
    """Load a source tree, separating readable files from unreadable ones.

    Returns
    -------
    tuple
        ``(files, unreadable)``: ``(file_name, full_text)`` pairs for every
        readable file, and a ``file_name -> reason`` mapping for the rest.
    """
    files: list[tuple[str, str]] = []
    unreadable: dict[str, str] = {}
    for doc in load_directory(path, glob, encoding=encoding, autodetect_encoding=autodetect_encoding):
        if ERROR_KEY in doc.metadata:
            unreadable[doc.metadata["source"]] = doc.metadata[ERROR_KEY]
        else:
            files.append((doc.metadata["source"], doc.page_content))
    if unreadable:
        logger.warning("Could not read %d of %d source file(s)", len(unreadable), len(files) + len(unreadable))
    return files, unreadable


def load_sources(path: str | Path, glob: str = "**/*.cs") -> list[tuple[str, str]]:
    """Return ``(file_name, full_text)`` pairs, one per readable matching file."""
    files, _ = scan_sources(path, glob)
    return files
