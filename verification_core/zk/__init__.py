from .celo import CeloProofVerifier, ZkCheck

__all__ = ["CeloProofVerifier", "ZkCheck"]
