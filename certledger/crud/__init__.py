from certledger.crud.certificate import certificate
from certledger.crud.certificate_type import certificate_type
from certledger.crud.ledger_transaction import ledger_transaction
from certledger.crud.reconciler_state import reconciler_state
from certledger.crud.student import student
from certledger.crud.user import user

__all__ = ["certificate", "certificate_type", "ledger_transaction", "reconciler_state", "student", "user"]
