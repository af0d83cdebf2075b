from covenant.cli import main

raise SystemExit(main())
