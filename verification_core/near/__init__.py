from .contract import NearVerificationContract, VerificationContract
from .rpc import FullAccessKeyResult, NearRpcClient

__all__ = ["NearRpcClient", "FullAccessKeyResult", "VerificationContract", "NearVerificationContract"]
