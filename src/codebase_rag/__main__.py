from codebase_rag.cli import main

raise SystemExit(main())
