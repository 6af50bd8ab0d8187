import logging
import re

from sqlmodel import Session

from modpack_manager.models.modpack import Modpack
from modpack_manager.publish.gist import GistClient
from modpack_manager.schemas.remote import PublishResult
from modpack_manager.services.manifest_service import export_native_manifest
from modpack_manager.services.modpack_service import touch

logger = logging.getLogger(__name__)


def manifest_filename(modpack: Modpack) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", modpack.name.lower()).strip("-") or "modpack"
    return f"{slug}.modpack.json"


async def publish_modpack(
    session: Session,
    modpack: Modpack,
    client: GistClient,
    *,
    public: bool = False,
    history_mode: str = "full",
) -> PublishResult:
    """Export the live state and push it to the modpack's gist.

    The first publish creates the gist; later ones update it in place so the
    raw URL handed to subscribers stays valid.
    """
    export = export_native_manifest(session, modpack, history_mode)
    content = export.manifest.model_dump_json(indent=2, exclude_none=True)
    filename = manifest_filename(modpack)

    if modpack.publish_gist_id:
        gist = await client.update_gist(modpack.publish_gist_id, filename, content)
    else:
        gist = await client.create_gist(
            filename, content, public=public, description=f"{modpack.name} modpack manifest"
        )

    modpack.publish_gist_id = gist.gist_id
    modpack.publish_url = gist.html_url
    modpack.publish_raw_url = gist.raw_url
    touch(modpack)
    session.add(modpack)
    session.commit()
    logger.info("Published '%s' to gist %s", modpack.name, gist.gist_id)
    return PublishResult(
        gist_id=gist.gist_id,
        html_url=gist.html_url,
        raw_url=gist.raw_url,
        share_code=export.share_code,
        checksum=export.checksum,
    )
