import sys

from tilesynth import run

sys.exit(run())
