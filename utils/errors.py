"""
Error Taxonomy
==============
Exceptions for failures that cross a component boundary.

- UpstreamError: an external service (RPC, price feed) could not answer.
  Transient; callers retry with backoff and keep their last good state.
- ExecutionError: quoting, building, signing or submitting a swap failed.
  The in-flight record always moves to a terminal "failed" state.
- ConfigurationError: the process cannot run as configured (e.g. live
  mode without a signer key). Raised at startup, nothing is attempted.

Business-rule rejections (copy trading disabled, already copied, no open
position) are NOT exceptions: they come back as outcome values.
Classification ambiguity is not an error either: the classifier returns None.
"""


class CopyTradeError(Exception):
    """Base class for all service errors."""


class UpstreamError(CopyTradeError):
    """An external data source failed or timed out."""


class RpcUnavailableError(UpstreamError):
    """Every configured RPC endpoint failed for one call."""

    def __init__(self, method: str, attempted: int, last_error: str = ""):
        self.method = method
        self.attempted = attempted
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"All {attempted} RPC endpoints failed for {method}{detail}")


class PriceFeedError(UpstreamError):
    """The price or metadata service returned nothing usable."""


class ExecutionError(CopyTradeError):
    """A swap could not be carried out."""


class QuoteError(ExecutionError):
    """No usable quote after the allowed attempts."""

    def __init__(self, message: str, input_mint: str = "", output_mint: str = "", amount: int = 0):
        super().__init__(message)
        self.input_mint = input_mint
        self.output_mint = output_mint
        self.amount = amount


class SwapError(ExecutionError):
    """The aggregator refused to build the swap transaction."""


class SubmitError(ExecutionError):
    """Signing or submitting the transaction failed."""


class ConfigurationError(CopyTradeError):
    """Fatal misconfiguration detected at startup."""
