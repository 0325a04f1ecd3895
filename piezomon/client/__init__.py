"""Client-side consumers of the relay feed."""

from piezomon.client.viewer import ViewerClient

__all__ = ["ViewerClient"]
