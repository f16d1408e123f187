"""Trip lifecycle event log lines."""

import logging

logger = logging.getLogger("src.trip_events")


def log_trip_event(event: str, trip_id: str, **fields) -> None:
    logger.info(
        "trip_event %s trip=%s",
        event,
        trip_id,
        extra={"trip_event": event, "trip_id": trip_id, **fields},
    )
