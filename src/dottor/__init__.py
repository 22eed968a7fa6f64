"""dottor: reconcile a dotfiles repository against the host it runs on."""

__version__ = "0.1.0"
