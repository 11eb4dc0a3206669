import sys

from channel_pulse.cli import main

sys.exit(main())
