# Import submodules so their @handles decorators register
from . import checkout, invoices, subscriptions, refunds, fraud  # noqa: F401
