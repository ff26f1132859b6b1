import sys

from llmcoders.cli import main

sys.exit(main())
