from stakeproof.version import __version__
