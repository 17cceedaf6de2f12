# certledger/models/__init__.py
# Loads every model so the tables are registered on Base.metadata.
import certledger.models.user_role           # noqa: F401
import certledger.models.role                # noqa: F401
import certledger.models.user                # noqa: F401
import certledger.models.student             # noqa: F401
import certledger.models.certificate_type    # noqa: F401
import certledger.models.certificate         # noqa: F401
import certledger.models.approval            # noqa: F401
import certledger.models.ledger_transaction  # noqa: F401
import certledger.models.reconciler_state    # noqa: F401

__all__: list[str] = []
