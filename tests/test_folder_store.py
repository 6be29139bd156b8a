import random
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from avatar_builder import create_app
from avatar_builder.config import TestConfig
from avatar_builder.extensions import db
from avatar_builder.models import Character, Folder, Image
from avatar_builder.services import (
    CycleError,
    FolderStore,
    LocalImageStorage,
    NotFoundError,
    ValidationError,
    folder_store,
)


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
def store(app_instance):
    return folder_store()


def _add_image(folder_id=None):
    image = Image(filename="placeholder.png", folder_id=folder_id)
    db.session.add(image)
    db.session.flush()
    image.filename = f"{image.id}.png"
    db.session.commit()
    return image.id


def _is_forest(parents):
    for start in parents:
        seen = set()
        current = start
        while current is not None:
            if current in seen:
                return False
            seen.add(current)
            current = parents.get(current)
    return True


def test_create_trims_name_and_provisions_directory(app_instance, store):
    folder = store.create("  Portraits  ", description="  close-ups  ")

    assert folder.name == "Portraits"
    assert folder.description == "close-ups"
    assert folder.parent_id is None
    assert folder.path == "Portraits"
    assert (Path(app_instance.config["GENERATED_DIR"]) / folder.id).is_dir()


def test_create_rejects_blank_name(store):
    with pytest.raises(ValidationError):
        store.create("   ")
    with pytest.raises(ValidationError):
        store.create(None)

    assert Folder.query.count() == 0


def test_create_with_unknown_parent_is_not_found(store):
    with pytest.raises(NotFoundError):
        store.create("Child", parent_id="does-not-exist")

    assert Folder.query.count() == 0


def test_directory_provisioning_is_idempotent(app_instance, store):
    folder = store.create("Sketches")
    directory = Path(app_instance.config["GENERATED_DIR"]) / folder.id
    (directory / "keep.png").write_bytes(b"png")

    store.update(folder.id, name="Sketches v2")
    store.update(folder.id, description="Rough drafts")

    assert directory.is_dir()
    assert (directory / "keep.png").exists()


def test_reparent_under_child_is_rejected_and_nothing_changes(store):
    a = store.create("A")
    b = store.create("B", parent_id=a.id)

    with pytest.raises(CycleError):
        store.update(a.id, name="Renamed", parent_id=b.id)

    db.session.expire_all()
    assert store.get(a.id).parent_id is None
    assert store.get(a.id).name == "A"
    assert store.get(b.id).parent_id == a.id


def test_reparent_under_grandchild_is_rejected(store):
    a = store.create("A")
    b = store.create("B", parent_id=a.id)
    c = store.create("C", parent_id=b.id)

    with pytest.raises(CycleError):
        store.update(a.id, parent_id=c.id)


def test_folder_cannot_be_its_own_parent(store):
    a = store.create("A")

    with pytest.raises(CycleError):
        store.update(a.id, parent_id=a.id)


def test_update_unknown_folder_is_not_found(store):
    with pytest.raises(NotFoundError):
        store.update("missing", name="Anything")


def test_update_moves_folder_between_branches_and_back_to_root(store):
    a = store.create("A")
    b = store.create("B")
    c = store.create("C", parent_id=a.id)

    moved = store.update(c.id, parent_id=b.id)
    assert moved.parent_id == b.id
    assert moved.path == "B / C"

    rooted = store.update(c.id, parent_id=None)
    assert rooted.parent_id is None
    assert rooted.path == "C"


def test_update_leaves_unspecified_fields_alone(store):
    a = store.create("A", description="keep me")
    b = store.create("B", parent_id=a.id)

    updated = store.update(b.id, name="Bee")

    assert updated.name == "Bee"
    assert updated.parent_id == a.id
    assert store.get(a.id).description == "keep me"


def test_update_rejects_blank_name(store):
    a = store.create("A")

    with pytest.raises(ValidationError):
        store.update(a.id, name="  ")

    assert store.get(a.id).name == "A"


def test_list_counts_direct_images_only(store):
    a = store.create("A")
    b = store.create("B", parent_id=a.id)
    _add_image(a.id)
    _add_image(b.id)
    _add_image(b.id)
    _add_image(None)

    counts = {folder.name: folder for folder in store.list()}

    assert counts["A"].image_count == 1
    assert counts["A"].total_image_count == 3
    assert counts["B"].image_count == 2
    assert counts["B"].path == "A / B"


def test_nested_listing(store):
    a = store.create("A")
    store.create("B", parent_id=a.id)

    nested = store.nested()

    assert len(nested) == 1
    assert nested[0]["name"] == "A"
    assert nested[0]["children"][0]["name"] == "B"


def test_scopes_are_isolated(app_instance):
    hero = Character(name="Hero")
    villain = Character(name="Villain")
    db.session.add_all([hero, villain])
    db.session.commit()
    storage = LocalImageStorage(app_instance.config["GENERATED_DIR"])
    hero_store = FolderStore(db.session, storage, character_id=hero.id)
    villain_store = FolderStore(db.session, storage, character_id=villain.id)

    hero_folder = hero_store.create("Armor")

    assert [folder.name for folder in hero_store.list()] == ["Armor"]
    assert villain_store.list() == []
    with pytest.raises(NotFoundError):
        villain_store.create("Stolen", parent_id=hero_folder.id)
    with pytest.raises(NotFoundError):
        villain_store.get(hero_folder.id)


def test_create_in_unknown_character_scope(app_instance):
    storage = LocalImageStorage(app_instance.config["GENERATED_DIR"])
    store = FolderStore(db.session, storage, character_id="nobody")

    with pytest.raises(NotFoundError):
        store.create("Orphans")


def test_random_operations_keep_forest(store):
    rng = random.Random(1337)
    ids = []
    for step in range(120):
        if not ids or rng.random() < 0.35:
            parent = rng.choice(ids) if ids and rng.random() < 0.7 else None
            ids.append(store.create(f"Folder {step}", parent_id=parent).id)
            continue
        target = rng.choice(ids)
        parent = rng.choice(ids + [None])
        try:
            store.update(target, parent_id=parent)
        except CycleError:
            pass

        parents = dict(db.session.query(Folder.id, Folder.parent_id).all())
        assert _is_forest(parents)


def test_delete_all_empties_scope_and_keeps_images(app_instance):
    hero = Character(name="Hero")
    db.session.add(hero)
    db.session.commit()
    storage = LocalImageStorage(app_instance.config["GENERATED_DIR"])
    hero_store = FolderStore(db.session, storage, character_id=hero.id)
    armor = hero_store.create("Armor")
    helmets = hero_store.create("Helmets", parent_id=armor.id)
    hero_store.create("Weapons")
    default_folder = FolderStore(db.session, storage).create("Shared")
    image_id = _add_image(helmets.id)

    results = hero_store.delete_all()

    assert len(results) == 2
    assert hero_store.list() == []
    assert [folder.id for folder in FolderStore(db.session, storage).list()] == [default_folder.id]
    db.session.expire_all()
    assert db.session.get(Image, image_id).folder_id is None
