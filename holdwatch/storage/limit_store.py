"""File storage for holding-time limits."""
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple, Union

import structlog
from pydantic import ValidationError

from holdwatch.core.config import monitor_config
from holdwatch.core.models import LimitRule, LimitsStorage
from holdwatch.tracking.limits import parse_duration

logger = structlog.get_logger(__name__)


class LimitStore:
    """JSON file holding limit rules and the check interval.

    File layout:
        {"limits": [{"coin": "LSK", "time": "12h"}], "check_interval": "5m"}

    A missing, empty or corrupt file loads as an empty rule set with the
    default check interval.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        default_check_interval: Optional[str] = None,
    ):
        self.path = Path(path or monitor_config.limits_file)
        self.default_check_interval = (
            default_check_interval or monitor_config.default_check_interval
        )

    def _empty(self) -> LimitsStorage:
        return LimitsStorage(check_interval=self.default_check_interval)

    def load(self) -> LimitsStorage:
        """Load limits from disk."""
        if not self.path.exists():
            logger.debug("limit_store.file_missing", path=str(self.path))
            return self._empty()

        try:
            data = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("limit_store.read_error", path=str(self.path), error=str(e))
            return self._empty()

        if not data.strip():
            logger.debug("limit_store.file_empty", path=str(self.path))
            return self._empty()

        try:
            storage = LimitsStorage.model_validate_json(data)
        except ValidationError as e:
            logger.warning("limit_store.parse_error", path=str(self.path), error=str(e))
            return self._empty()

        if not storage.check_interval:
            storage.check_interval = self.default_check_interval

        logger.debug(
            "limit_store.loaded",
            limits=len(storage.limits),
            check_interval=storage.check_interval,
        )
        return storage

    def save(self, storage: LimitsStorage) -> None:
        """Write limits to disk atomically.

        Raises:
            OSError: If the file cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = storage.model_dump_json(indent=2)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(payload)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug("limit_store.saved", limits=len(storage.limits))

    def upsert_limit(self, coin: str, time: str) -> Tuple[LimitRule, bool]:
        """Add or replace the limit for a base asset.

        Args:
            coin: Base asset, any case
            time: Duration text, e.g. "12h"

        Returns:
            (rule, created) where created is False when an existing rule
            was updated

        Raises:
            DurationParseError: If time is not a valid duration; the stored
                configuration is left untouched
        """
        parse_duration(time)
        rule = LimitRule(coin=coin, time=time)

        storage = self.load()
        existing = storage.find(rule.coin)
        if existing is not None:
            storage.limits = [
                rule if r.coin == rule.coin else r for r in storage.limits
            ]
            created = False
        else:
            storage.limits.append(rule)
            created = True

        self.save(storage)
        logger.info(
            "limit_store.limit_saved",
            coin=rule.coin,
            time=rule.time,
            created=created,
        )
        return rule, created

    def set_check_interval(self, interval: str) -> str:
        """Store a new check interval.

        Raises:
            DurationParseError: If interval is not a valid duration
        """
        interval = interval.strip()
        parse_duration(interval)

        storage = self.load()
        storage.check_interval = interval
        self.save(storage)

        logger.info("limit_store.check_interval_saved", check_interval=interval)
        return interval
