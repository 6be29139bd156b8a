import base64
import io
import sys
import zipfile
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from avatar_builder import create_app
from avatar_builder.config import TestConfig
from avatar_builder.extensions import db
from avatar_builder.models import Character, Image
from avatar_builder.services import (
    ImageLocationBinding,
    LocalImageStorage,
    NotFoundError,
    ValidationError,
    folder_store,
    image_binding,
    image_library,
)
from avatar_builder.services.records import GENERATION_FIELDS

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"
PNG_DATA = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()


@pytest.fixture
def app_instance(tmp_path):
    class LocalTestConfig(TestConfig):
        DATA_DIR = str(tmp_path)
        GENERATED_DIR = str(tmp_path / "generated")

    app = create_app(LocalTestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def generated(app_instance):
    return Path(app_instance.config["GENERATED_DIR"])


@pytest.fixture
def store(app_instance):
    return folder_store()


@pytest.fixture
def library(app_instance):
    return image_library()


@pytest.fixture
def binding(app_instance):
    return image_binding()


def test_save_writes_file_and_metadata(library, store, generated):
    folder = store.create("Portraits")

    record = library.save(
        PNG_DATA,
        {"positive_prompt": "a knight", "steps": 30, "loras": [{"name": "armor", "weight": 0.8}], "bogus": 1},
        folder_id=folder.id,
    )

    assert record.folder_id == folder.id
    assert record.folder_name == "Portraits"
    assert record.url == f"/generated/{folder.id}/{record.filename}"
    assert (generated / folder.id / record.filename).read_bytes() == PNG_BYTES
    payload = record.to_dict()
    assert payload["positive_prompt"] == "a knight"
    assert payload["steps"] == 30
    assert payload["loras"] == [{"name": "armor", "weight": 0.8}]
    assert "bogus" not in payload


def test_save_rejects_bad_payloads(library):
    with pytest.raises(ValidationError):
        library.save(None)
    with pytest.raises(ValidationError):
        library.save("not base64 !!")
    with pytest.raises(NotFoundError):
        library.save(PNG_DATA, folder_id="missing")

    assert Image.query.count() == 0


def test_move_one_relocates_file_and_pointer(binding, library, store, generated):
    folder = store.create("Keepers")
    image_id = library.save(PNG_DATA).id

    record = binding.move_one(image_id, folder.id)

    assert record.folder_id == folder.id
    assert record.folder_path == "Keepers"
    assert record.file_migrated is True
    assert (generated / folder.id / f"{image_id}.png").is_file()
    assert not (generated / f"{image_id}.png").exists()

    back = binding.move_one(image_id, None)
    assert back.folder_id is None
    assert (generated / f"{image_id}.png").is_file()


def test_move_to_current_folder_touches_no_files(binding, library, store, monkeypatch):
    folder = store.create("Keepers")
    image_id = library.save(PNG_DATA, folder_id=folder.id).id
    calls = []
    original_move = LocalImageStorage.move

    def spy(self, *args):
        calls.append(args)
        return original_move(self, *args)

    monkeypatch.setattr(LocalImageStorage, "move", spy)

    record = binding.move_one(image_id, folder.id)

    assert record.folder_id == folder.id
    assert calls == []


def test_move_one_errors(binding, library):
    image_id = library.save(PNG_DATA).id

    with pytest.raises(NotFoundError):
        binding.move_one("missing", None)
    with pytest.raises(NotFoundError):
        binding.move_one(image_id, "missing-folder")

    assert db.session.get(Image, image_id).folder_id is None


def test_move_with_missing_file_updates_pointer_only(binding, library, store, generated):
    folder = store.create("Keepers")
    image_id = library.save(PNG_DATA).id
    (generated / f"{image_id}.png").unlink()

    record = binding.move_one(image_id, folder.id)

    assert record.folder_id == folder.id
    assert not (generated / folder.id / f"{image_id}.png").exists()


def test_move_many_counts_only_existing_images(binding, library, store, generated):
    folder = store.create("Batch")
    first = library.save(PNG_DATA).id
    second = library.save(PNG_DATA).id

    result = binding.move_many([first, second, "ghost", first], folder.id)

    assert result.moved_count == 2
    assert result.moved_ids == [first, second]
    assert result.missing_ids == ["ghost"]
    assert result.folder_id == folder.id
    for image_id in (first, second):
        assert db.session.get(Image, image_id).folder_id == folder.id
        assert (generated / folder.id / f"{image_id}.png").is_file()


def test_move_many_with_unknown_target_moves_nothing(binding, library):
    image_id = library.save(PNG_DATA).id

    with pytest.raises(NotFoundError):
        binding.move_many([image_id], "missing-folder")

    assert db.session.get(Image, image_id).folder_id is None


def test_delete_one_removes_file_then_row(binding, library, generated):
    image_id = library.save(PNG_DATA).id

    binding.delete_one(image_id)

    assert db.session.get(Image, image_id) is None
    assert not (generated / f"{image_id}.png").exists()
    with pytest.raises(NotFoundError):
        binding.delete_one(image_id)


def test_delete_tolerates_missing_files(binding, library, generated):
    kept_file = library.save(PNG_DATA).id
    lost_file = library.save(PNG_DATA).id
    (generated / f"{lost_file}.png").unlink()

    result = binding.delete_many([kept_file, lost_file, "ghost"])

    assert result.deleted_count == 2
    assert result.missing_ids == ["ghost"]
    assert Image.query.count() == 0


def test_list_filters_by_folder_descendants_and_unfiled(library, store):
    a = store.create("A")
    b = store.create("B", parent_id=a.id)
    other = store.create("Other")
    in_a = library.save(PNG_DATA, folder_id=a.id).id
    in_b = library.save(PNG_DATA, folder_id=b.id).id
    library.save(PNG_DATA, folder_id=other.id)
    unfiled = library.save(PNG_DATA).id

    assert library.list().total == 4
    assert {image.id for image in library.list(a.id).images} == {in_a, in_b}
    assert [image.id for image in library.list("unfiled").images] == [unfiled]
    assert [image.id for image in library.list("null").images] == [unfiled]

    page = library.list(limit=3)
    assert len(page.images) == 3
    assert page.has_more is True
    assert library.list(limit=3, offset=3).has_more is False


def test_list_reports_folder_path(library, store):
    a = store.create("A")
    b = store.create("B", parent_id=a.id)
    library.save(PNG_DATA, folder_id=b.id)

    image = library.list(b.id).images[0]

    assert image.folder_name == "B"
    assert image.folder_path == "A / B"


def test_organize_existing_files_moves_flat_files(library, store, generated):
    folder = store.create("Legacy")
    legacy = Image(filename="legacy.png", folder_id=folder.id, file_migrated=False)
    vanished = Image(filename="vanished.png", folder_id=folder.id, file_migrated=False)
    db.session.add_all([legacy, vanished])
    db.session.commit()
    (generated / "legacy.png").write_bytes(PNG_BYTES)

    migrated = library.organize_existing_files()

    assert migrated == 1
    assert (generated / folder.id / "legacy.png").is_file()
    assert not (generated / "legacy.png").exists()
    db.session.expire_all()
    assert db.session.get(Image, legacy.id).file_migrated is True
    assert db.session.get(Image, vanished.id).file_migrated is False


def test_build_archive_contains_requested_files(library, store):
    folder = store.create("Zip")
    first = library.save(PNG_DATA, folder_id=folder.id)
    second = library.save(PNG_DATA)

    data = library.build_archive([first.id, second.id, "ghost"])

    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        assert sorted(archive.namelist()) == sorted([first.filename, second.filename])
        assert archive.read(first.filename) == PNG_BYTES


def test_scoped_binding_only_targets_folders_of_its_scope(app_instance, library, store):
    hero = Character(name="Hero")
    db.session.add(hero)
    db.session.commit()
    storage = LocalImageStorage(app_instance.config["GENERATED_DIR"])
    hero_folder = folder_store(hero.id).create("Armor")
    shared = store.create("Shared")
    image_id = library.save(PNG_DATA).id
    default_binding = ImageLocationBinding(db.session, storage, character_id=None)
    hero_binding = ImageLocationBinding(db.session, storage, character_id=hero.id)

    with pytest.raises(NotFoundError):
        default_binding.move_one(image_id, hero_folder.id)
    with pytest.raises(NotFoundError):
        hero_binding.move_many([image_id], shared.id)
    assert db.session.get(Image, image_id).folder_id is None

    assert hero_binding.move_one(image_id, hero_folder.id).folder_id == hero_folder.id
    assert default_binding.move_one(image_id, shared.id).folder_id == shared.id
    assert default_binding.move_one(image_id, None).folder_id is None


def test_generation_fields_cover_image_metadata_columns():
    bookkeeping = {"id", "filename", "folder_id", "file_migrated", "created_at"}
    columns = {column.name for column in Image.__table__.columns} - bookkeeping

    assert set(GENERATION_FIELDS) == columns
    assert len(GENERATION_FIELDS) == len(set(GENERATION_FIELDS))
