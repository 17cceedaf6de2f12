from certledger.crud.base import CRUDBase
from certledger.models.student import Student

student = CRUDBase(Student)
