"""verification_core: session store, verification reconciler, verified-account listing and status API."""

__version__ = "0.1.0"
