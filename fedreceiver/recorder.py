import json
import tempfile
from pathlib import Path

from loguru import logger

from fedreceiver import activitypub as ap
from fedreceiver.ap_object import ObjectData
from fedreceiver.config import AP_LOG_UNKNOWN
from fedreceiver.config import UNHANDLED_ACTIVITIES_DIR
from fedreceiver.dispatch import Bucket
from fedreceiver.trust import TrustContext


def _file_prefix(
    bucket: Bucket,
    activity_type: str,
    object_data: ObjectData,
) -> str:
    prefix = f"{bucket.value}-{activity_type.replace(':', '-')}-"
    for object_type in [object_data.object_type, object_data.object_object_type]:
        if object_type:
            prefix += f"{object_type.replace(':', '-')}-"
    return prefix


def store_unhandled_activity(
    bucket: Bucket,
    activity_type: str,
    object_data: ObjectData,
    activity: ap.RawObject,
    body: str = "",
    uid: int = 0,
    trust: TrustContext | None = None,
    push: bool = False,
) -> Path | None:
    """Dumps an activity that couldn't be processed for later inspection."""
    if not AP_LOG_UNKNOWN:
        return None

    trust = trust or TrustContext()
    try:
        snapshot = {
            "activity": activity,
            "body": body,
            "uid": uid,
            "trust_source": trust.trusted,
            "push": push,
            "signer": list(trust.signers),
            "object_data": object_data.model_dump(mode="json", by_alias=True),
        }
        UNHANDLED_ACTIVITIES_DIR.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            prefix=_file_prefix(bucket, activity_type, object_data),
            suffix=".json",
            dir=UNHANDLED_ACTIVITIES_DIR,
            delete=False,
            encoding="utf-8",
        ) as f:
            json.dump(snapshot, f, indent=4, ensure_ascii=False, default=str)
    except Exception:
        logger.exception(f"Failed to store the {bucket.value} {activity_type}")
        return None

    path = Path(f.name)
    logger.info(
        f"Stored {bucket.value} activity {activity_type} "
        f"{object_data.object_type} {object_data.object_object_type}: {path}"
    )
    return path
