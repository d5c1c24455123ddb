"""
Raw zone file loader with load history (skip files already loaded)
"""

import pandas as pd
from typing import List, Dict, Any, Optional
from pathlib import Path
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from models.load_history import BronzeLoadHistory
from models.base import LoadStatus
from pipeline.loaders.bronze_loader import BronzeLoader
from schemas.pipeline import FileLoadResult
from core.exceptions import BronzeLoadError
import hashlib
import re
import logging

logger = logging.getLogger(__name__)

DEFAULT_PATTERN = r".*employee_data_part_.*[.](parquet|csv|json)"


class BronzeFileLoader:
    """
    Load employee files from the raw zone into bronze.

    Supports:
    - Parquet, CSV and JSON lines files
    - Header normalization (case-insensitive column match)
    - Load history: a file already LOADED with the same content is skipped
    - Per-file failure isolation: a file loads in one transaction, so a
      failed file leaves nothing behind and is retried whole
    """

    def __init__(
        self,
        db_session: AsyncSession,
        raw_zone_path: str,
        pattern: str = DEFAULT_PATTERN,
        batch_size: int = 500
    ):
        self.db = db_session
        self.raw_zone_path = Path(raw_zone_path)
        self.pattern = re.compile(pattern, re.IGNORECASE)
        self.batch_size = batch_size
        self.loader = BronzeLoader(db_session)

    def list_files(self) -> List[Path]:
        """Files in the raw zone whose name matches the pattern, sorted"""
        if not self.raw_zone_path.exists():
            logger.warning(f"Raw zone not found: {self.raw_zone_path}")
            return []
        return sorted(
            path for path in self.raw_zone_path.iterdir()
            if path.is_file() and self.pattern.fullmatch(path.name)
        )

    async def refresh(self) -> FileLoadResult:
        """
        Load every matching file not yet loaded.

        Returns:
            Loaded, skipped and failed files with the number of rows loaded
        """
        result = FileLoadResult()

        for path in self.list_files():
            content_hash = self._hash_file(path)

            if await self._already_loaded(path.name, content_hash):
                result.files_skipped.append(path.name)
                continue

            try:
                records = self.read_file(path)
                # One transaction per file, committed with its LOADED entry
                for i in range(0, len(records), self.batch_size):
                    await self.loader.load_records(
                        records[i:i + self.batch_size],
                        source_file=path.name,
                        commit=False
                    )
            except (BronzeLoadError, SQLAlchemyError, ValueError, OSError) as e:
                await self.db.rollback()
                logger.error(f"Failed to load {path.name}: {str(e)}")
                await self._record(path.name, content_hash, LoadStatus.LOAD_FAILED, 0, str(e))
                result.files_failed[path.name] = str(e)
                continue

            await self._record(path.name, content_hash, LoadStatus.LOADED, len(records))
            result.files_loaded.append(path.name)
            result.rows_loaded += len(records)

        logger.info(
            f"Raw zone refresh: loaded={len(result.files_loaded)}, "
            f"skipped={len(result.files_skipped)}, failed={len(result.files_failed)}, "
            f"rows={result.rows_loaded}"
        )
        return result

    @staticmethod
    def read_file(path: Path) -> List[Dict[str, Any]]:
        """Read one raw zone file into a list of records"""
        suffix = path.suffix.lower()
        if suffix == ".parquet":
            df = pd.read_parquet(path)
        elif suffix == ".csv":
            df = pd.read_csv(path)
        elif suffix == ".json":
            df = pd.read_json(path, lines=True)
        else:
            raise ValueError(f"Unsupported file format: {path.suffix}")

        # Normalize column names (strip whitespace, lowercase)
        df.columns = df.columns.str.strip().str.lower().str.replace(' ', '_')

        # Missing values become None
        df = df.astype(object).where(pd.notnull(df), None)

        return df.to_dict(orient="records")

    async def _already_loaded(self, file_name: str, content_hash: str) -> bool:
        result = await self.db.execute(
            select(BronzeLoadHistory.id).where(
                and_(
                    BronzeLoadHistory.file_name == file_name,
                    BronzeLoadHistory.content_hash == content_hash,
                    BronzeLoadHistory.status == LoadStatus.LOADED
                )
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _record(
        self,
        file_name: str,
        content_hash: str,
        status: LoadStatus,
        row_count: int,
        error_message: Optional[str] = None
    ):
        self.db.add(BronzeLoadHistory(
            file_name=file_name,
            content_hash=content_hash,
            status=status,
            row_count=row_count,
            error_message=error_message,
            loaded_at=datetime.utcnow()
        ))
        await self.db.commit()

    @staticmethod
    def _hash_file(path: Path) -> str:
        digest = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                digest.update(chunk)
        return digest.hexdigest()
