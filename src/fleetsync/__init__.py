"""fleetsync - idempotent, conditional fleet operations for cloud instances.

Reconciles a declarative fleet file against live provider state and applies
operations to the subset of instances whose discovered facts match a
predicate.

Quick Start:
    from fleetsync import Reconciler, ConditionalOperator, parse, parse_predicate
    from fleetsync.providers import EC2Provider
    from fleetsync.types import Operation

    provider = EC2Provider(region="us-east-1")
    report = await Reconciler(provider).converge(parse("fleet.yml"))

    operator = ConditionalOperator(provider)
    report = await operator.run(
        parse_predicate('os_family == "Debian"'), Operation.parse("shutdown")
    )
"""

__version__ = "0.1.0"

from fleetsync.conditional import ConditionalOperator
from fleetsync.descriptor import parse
from fleetsync.predicate import parse_predicate
from fleetsync.reconciler import Reconciler, reconcile

__all__ = [
    "__version__",
    "ConditionalOperator",
    "Reconciler",
    "parse",
    "parse_predicate",
    "reconcile",
]
