"""OpenGather: community venues, event proposals and RSVPs."""
