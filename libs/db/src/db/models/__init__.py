from .finance import Base, RcMerchantMemory, RcTransaction

__all__ = ["Base", "RcMerchantMemory", "RcTransaction"]
