"""Types shared by the request/response schemas."""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator

from wallet.database import to_utc

# Timestamps are stored as naive UTC and always leave the API as aware UTC.
# Naive input is taken to be UTC.
UtcDatetime = Annotated[datetime, AfterValidator(to_utc)]
