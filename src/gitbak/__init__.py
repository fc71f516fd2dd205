"""gitbak: back up dotfiles into a git-versioned directory and restore them."""

__version__ = "0.1.0"
