from .base import RecordSource, RequestQueue, public_record, validate_record
from .memory import MemorySource
from .sql import SQLSource
from .jsonapi import JSONAPISource
