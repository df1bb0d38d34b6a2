from __future__ import annotations


class InvoicingError(RuntimeError):
    pass


class ConfigError(InvoicingError):
    pass


class PricingError(InvoicingError):
    pass


class CrmLookupError(InvoicingError, LookupError):
    pass


class RenderError(InvoicingError):
    pass


class StorageError(InvoicingError):
    pass
