"""
Standardized pagination parameters for the admin list endpoints.
"""

from typing import Annotated

from fastapi import Query

PaginationLimit = Annotated[
    int, Query(ge=1, le=100, description="Maximum number of records to return")
]

# Audit trails and recent-event views
PaginationLimitLarge = Annotated[
    int, Query(ge=1, le=1000, description="Maximum number of records to return")
]

PaginationOffset = Annotated[int, Query(ge=0, description="Number of records to skip")]
