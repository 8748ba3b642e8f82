"""Publishing collaborators: artifact signing and pushing."""

from aci_imagegen.publish.pusher import HttpPusher, Pusher
from aci_imagegen.publish.signer import GpgSigner, Signer

__all__ = ["GpgSigner", "HttpPusher", "Pusher", "Signer"]
