"""Service-level tests for the recipe upsert.

Covers:
- Create with steps, photos and ingredient lines
- Same-title conflict, replace and edit
- Rollback of every write (and of stored files) on failure
- Staged file cleanup after commit
"""

import logging
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from recipeshare.models import Ingredient, Photo, Recipe, RecipeStep, UsedIngredient
from recipeshare.schemas import IngredientLine, UpsertAction
from recipeshare.services import recipe_upsert
from recipeshare.services.errors import (
    RecipeStorageError,
    RecipeValidationError,
    ReferenceNotFoundError,
    UploadRejectedError,
)
from recipeshare.services.recipe_upsert import (
    CreateRecipe,
    FileCleanup,
    RecipeUploads,
    StoredImages,
    UploadedImage,
    UpsertConflict,
    UpsertResult,
    apply_upsert,
    upsert_recipe,
)
from recipeshare.settings import settings
from recipeshare.storage.s3_compat import S3UploadStorage

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _png(name="photo.png"):
    return UploadedImage(filename=name, data=PNG_BYTES)


def _stored_files(storage):
    return sorted(p.relative_to(storage.root).as_posix() for p in storage.root.rglob("*") if p.is_file())


def test_create_recipe(db_session, storage, make_payload):
    uploads = RecipeUploads(cover=_png("cover.jpg"), steps=[_png("mix.png")])

    result = upsert_recipe(db_session, storage, make_payload(), uploads)

    assert isinstance(result, UpsertResult)
    assert result.created is True

    db_session.expire_all()
    recipe = db_session.get(Recipe, result.recipe_id)
    assert recipe.title == "Pancakes"
    assert recipe.title_key == "pancakes"
    assert recipe.view_count == 0
    assert recipe.is_approved is False
    assert [s.step_number for s in recipe.steps] == [1, 2]
    assert recipe.steps[0].photo is not None
    assert recipe.steps[1].photo is None
    assert recipe.cover.extension == "jpg"
    assert recipe.image_url.startswith("/uploads/recipes/")

    lines = {ui.name: ui for ui in recipe.ingredients}
    assert set(lines) == {"Flour", "Sugar"}
    assert lines["Flour"].amount == 200
    assert lines["Flour"].unit_abbreviation == "g"
    assert len(_stored_files(storage)) == 2


def test_catalog_shared_between_recipes(db_session, storage, make_payload):
    upsert_recipe(db_session, storage, make_payload(title="Pancakes"))
    upsert_recipe(db_session, storage, make_payload(
        title="Crepes",
        ingredients=[
            IngredientLine(name="  FLOUR ", amount=100, unit="g"),
            IngredientLine(name="Milk", amount=1, unit="cup"),
        ],
    ))

    db_session.expire_all()
    names = sorted(i.name for i in db_session.query(Ingredient).all())
    assert names == ["Flour", "Milk", "Sugar"]
    assert db_session.query(UsedIngredient).count() == 4


def test_duplicate_lines_share_one_catalog_entry(db_session, storage, make_payload):
    upsert_recipe(db_session, storage, make_payload(ingredients=[
        IngredientLine(name="Butter", amount=50, unit="g"),
        IngredientLine(name="butter", amount=1, unit="tbsp"),
    ]))

    assert db_session.query(Ingredient).count() == 1
    assert db_session.query(UsedIngredient).count() == 2


def test_same_title_conflicts(db_session, storage, make_payload):
    first = upsert_recipe(db_session, storage, make_payload())
    uploads = RecipeUploads(cover=_png())

    outcome = upsert_recipe(db_session, storage, make_payload(title="  PANCAKES "), uploads)

    assert isinstance(outcome, UpsertConflict)
    assert outcome.existing_recipe_id == first.recipe_id
    assert db_session.query(Recipe).count() == 1
    # Conflicts are decided before anything is stored
    assert _stored_files(storage) == []


def test_same_title_other_user_is_independent(db_session, storage, make_payload, other_user):
    upsert_recipe(db_session, storage, make_payload())
    outcome = upsert_recipe(db_session, storage, make_payload(user_id=other_user.id))

    assert isinstance(outcome, UpsertResult)
    assert db_session.query(Recipe).count() == 2


def test_replace_rewrites_recipe(db_session, storage, make_payload):
    first = upsert_recipe(
        db_session, storage, make_payload(),
        RecipeUploads(cover=_png("old.png"), steps=[_png("a.png"), _png("b.png")]),
    )
    old_files = _stored_files(storage)
    assert len(old_files) == 3

    result = upsert_recipe(
        db_session, storage,
        make_payload(
            title="pancakes",
            steps=["Only step"],
            ingredients=[IngredientLine(name="Eggs", amount=2, unit="pc")],
        ),
        action=UpsertAction.replace,
    )

    assert result.recipe_id == first.recipe_id
    assert result.created is False

    db_session.expire_all()
    recipe = db_session.get(Recipe, first.recipe_id)
    assert recipe.title == "pancakes"
    assert [(s.step_number, s.instructions) for s in recipe.steps] == [(1, "Only step")]
    assert [ui.name for ui in recipe.ingredients] == ["Eggs"]
    assert db_session.query(RecipeStep).count() == 1
    assert db_session.query(UsedIngredient).count() == 1
    # Without a new upload the cover stays; the step photos are gone
    assert recipe.cover is not None
    assert db_session.query(Photo).count() == 1
    assert _stored_files(storage) == [recipe.cover.storage_key]
    # Catalog entries are never removed
    assert db_session.query(Ingredient).count() == 3


def test_replace_cover_removes_old_file(db_session, storage, make_payload):
    upsert_recipe(db_session, storage, make_payload(), RecipeUploads(cover=_png("old.png")))
    [old_key] = _stored_files(storage)

    upsert_recipe(
        db_session, storage, make_payload(),
        RecipeUploads(cover=_png("new.webp")), action=UpsertAction.replace,
    )

    files = _stored_files(storage)
    assert old_key not in files
    assert len(files) == 1
    assert files[0].endswith(".webp")


def test_edit_keeps_photos_not_reuploaded(db_session, storage, make_payload):
    first = upsert_recipe(
        db_session, storage, make_payload(steps=["One", "Two", "Three"]),
        RecipeUploads(steps=[_png("1.png"), _png("2.png")]),
    )
    db_session.expire_all()
    recipe = db_session.get(Recipe, first.recipe_id)
    first_photo_key = recipe.steps[0].photo.storage_key
    second_photo_key = recipe.steps[1].photo.storage_key

    result = upsert_recipe(
        db_session, storage,
        make_payload(steps=["One, revised", "Two"], description="Edited"),
        RecipeUploads(steps=[_png("1b.png")]),
        action=UpsertAction.edit,
    )

    assert result.created is False
    db_session.expire_all()
    recipe = db_session.get(Recipe, first.recipe_id)
    assert recipe.description == "Edited"
    assert [s.instructions for s in recipe.steps] == ["One, revised", "Two"]
    assert recipe.steps[0].photo.storage_key != first_photo_key
    assert recipe.steps[1].photo.storage_key == second_photo_key

    files = _stored_files(storage)
    assert first_photo_key not in files
    assert second_photo_key in files
    assert len(files) == 2


def test_edit_appends_new_steps(db_session, storage, make_payload):
    first = upsert_recipe(db_session, storage, make_payload(steps=["One"]))

    upsert_recipe(
        db_session, storage, make_payload(steps=["One", "Two", "Three"]),
        recipe_id=first.recipe_id,
    )

    db_session.expire_all()
    recipe = db_session.get(Recipe, first.recipe_id)
    assert [(s.step_number, s.instructions) for s in recipe.steps] == [(1, "One"), (2, "Two"), (3, "Three")]


def test_edit_rename_onto_other_recipe_conflicts(db_session, storage, make_payload):
    upsert_recipe(db_session, storage, make_payload(title="Waffles"))
    pancakes = upsert_recipe(db_session, storage, make_payload(title="Pancakes"))

    outcome = upsert_recipe(
        db_session, storage, make_payload(title="waffles"), recipe_id=pancakes.recipe_id,
    )

    assert isinstance(outcome, UpsertConflict)
    db_session.expire_all()
    assert db_session.get(Recipe, pancakes.recipe_id).title == "Pancakes"


def test_unknown_unit_rolls_back_everything(db_session, storage, make_payload):
    uploads = RecipeUploads(cover=_png(), steps=[_png()])
    payload = make_payload(ingredients=[
        IngredientLine(name="Flour", amount=200, unit="g"),
        IngredientLine(name="Sugar", amount=1, unit="bogus"),
    ])

    with pytest.raises(ReferenceNotFoundError) as exc:
        upsert_recipe(db_session, storage, payload, uploads)

    assert exc.value.entity == "unit"
    assert exc.value.ingredient == "Sugar"
    db_session.expire_all()
    assert db_session.query(Recipe).count() == 0
    assert db_session.query(RecipeStep).count() == 0
    assert db_session.query(Photo).count() == 0
    # Flour was inserted into the catalog before the failing line
    assert db_session.query(Ingredient).count() == 0
    assert _stored_files(storage) == []


def test_failed_replace_keeps_previous_version(db_session, storage, make_payload):
    first = upsert_recipe(db_session, storage, make_payload(), RecipeUploads(cover=_png()))
    before = _stored_files(storage)

    with pytest.raises(ReferenceNotFoundError):
        upsert_recipe(
            db_session, storage,
            make_payload(steps=["New"], ingredients=[IngredientLine(name="Salt", amount=1, unit="bogus")]),
            RecipeUploads(cover=_png()),
            action=UpsertAction.replace,
        )

    db_session.expire_all()
    recipe = db_session.get(Recipe, first.recipe_id)
    assert len(recipe.steps) == 2
    assert sorted(ui.name for ui in recipe.ingredients) == ["Flour", "Sugar"]
    assert _stored_files(storage) == before


def test_unknown_recipe_type(db_session, storage, make_payload):
    with pytest.raises(ReferenceNotFoundError) as exc:
        upsert_recipe(db_session, storage, make_payload(type_id=999))

    assert exc.value.entity == "recipe_type"
    assert db_session.query(Recipe).count() == 0


def test_edit_of_foreign_recipe_is_not_found(db_session, storage, make_payload, other_user):
    theirs = upsert_recipe(db_session, storage, make_payload(user_id=other_user.id))

    with pytest.raises(ReferenceNotFoundError) as exc:
        upsert_recipe(db_session, storage, make_payload(), recipe_id=theirs.recipe_id)

    assert exc.value.entity == "recipe"


def test_more_step_images_than_steps(db_session, storage, make_payload):
    uploads = RecipeUploads(steps=[_png(), _png(), _png()])

    with pytest.raises(RecipeValidationError) as exc:
        upsert_recipe(db_session, storage, make_payload(), uploads)

    assert exc.value.errors[0]["field"] == "step_images"
    assert _stored_files(storage) == []


def test_rejected_upload_removes_earlier_files(db_session, storage, make_payload):
    uploads = RecipeUploads(cover=_png("cover.png"), steps=[_png("notes.txt")])

    with pytest.raises(UploadRejectedError) as exc:
        upsert_recipe(db_session, storage, make_payload(), uploads)

    assert exc.value.filename == "notes.txt"
    assert _stored_files(storage) == []
    assert db_session.query(Recipe).count() == 0


def test_cleanup_failure_is_only_logged(db_session, storage, make_payload, monkeypatch, caplog):
    upsert_recipe(db_session, storage, make_payload(), RecipeUploads(cover=_png()))
    monkeypatch.setattr(storage, "delete", lambda key: False)

    with caplog.at_level(logging.WARNING, logger="recipeshare.upsert"):
        result = upsert_recipe(
            db_session, storage, make_payload(),
            RecipeUploads(cover=_png()), action=UpsertAction.replace,
        )

    assert isinstance(result, UpsertResult)
    assert "Could not delete stored file" in caplog.text


def test_cleanup_exception_is_only_logged(db_session, storage, make_payload, monkeypatch, caplog):
    upsert_recipe(db_session, storage, make_payload(), RecipeUploads(cover=_png()))

    def broken_delete(key):
        raise RuntimeError("disk gone")

    monkeypatch.setattr(storage, "delete", broken_delete)

    with caplog.at_level(logging.WARNING, logger="recipeshare.upsert"):
        result = upsert_recipe(
            db_session, storage, make_payload(),
            RecipeUploads(cover=_png()), action=UpsertAction.replace,
        )

    assert isinstance(result, UpsertResult)
    assert "disk gone" in caplog.text


def test_create_race_returns_conflict(db_session, storage, make_payload, user, recipe_type):
    # A concurrent request committed the same title after our plan was made
    winner = Recipe(
        user_id=user.id, title="Pancakes", title_key="pancakes", description="First",
        prep_time=1, cook_time=1, servings=1, difficulty="easy", type_id=recipe_type.id,
    )
    db_session.add(winner)
    db_session.commit()
    winner_id = winner.id

    cleanup = FileCleanup()
    outcome = apply_upsert(db_session, CreateRecipe(), make_payload(), StoredImages(), cleanup)

    assert isinstance(outcome, UpsertConflict)
    assert outcome.existing_recipe_id == winner_id
    assert db_session.query(Recipe).count() == 1


def test_lost_create_race_removes_uploads(db_session, storage, make_payload, user, recipe_type, monkeypatch):
    monkeypatch.setattr(recipe_upsert, "plan_upsert", lambda db, payload, action: CreateRecipe())
    winner = Recipe(
        user_id=user.id, title="Pancakes", title_key="pancakes", description="First",
        prep_time=1, cook_time=1, servings=1, difficulty="easy", type_id=recipe_type.id,
    )
    db_session.add(winner)
    db_session.commit()

    outcome = upsert_recipe(db_session, storage, make_payload(), RecipeUploads(cover=_png()))

    assert isinstance(outcome, UpsertConflict)
    assert _stored_files(storage) == []


def test_too_many_files_stores_nothing(db_session, storage, make_payload, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_files", 2)
    uploads = RecipeUploads(cover=_png("cover.png"), steps=[_png("1.png"), _png("2.png")])

    with pytest.raises(UploadRejectedError) as exc:
        upsert_recipe(db_session, storage, make_payload(), uploads)

    assert "at most 2 files" in exc.value.reason
    assert _stored_files(storage) == []
    assert db_session.query(Recipe).count() == 0


def test_object_store_failure_removes_earlier_uploads(db_session, make_payload):
    client = MagicMock()
    client.put_object.side_effect = [
        None,
        ClientError({"Error": {"Code": "503", "Message": "SlowDown"}}, "PutObject"),
    ]
    s3 = S3UploadStorage("http://minio:9000", "auto", "k", "s", "uploads", "/uploads", client=client)
    uploads = RecipeUploads(cover=_png("cover.png"), steps=[_png("mix.png")])

    with pytest.raises(RecipeStorageError):
        upsert_recipe(db_session, s3, make_payload(), uploads)

    cover_key = client.put_object.call_args_list[0].kwargs["Key"]
    assert cover_key.startswith("recipes/")
    client.delete_object.assert_called_once_with(Bucket="uploads", Key=cover_key)
    assert db_session.query(Recipe).count() == 0


def test_step_image_gaps_keep_positions(db_session, storage, make_payload):
    result = upsert_recipe(
        db_session, storage, make_payload(steps=["One", "Two", "Three"]),
        RecipeUploads(steps=[None, _png("2.png")]),
    )

    db_session.expire_all()
    recipe = db_session.get(Recipe, result.recipe_id)
    assert [s.photo is not None for s in recipe.steps] == [False, True, False]
    assert len(_stored_files(storage)) == 1


def test_edit_with_gap_keeps_earlier_photo(db_session, storage, make_payload):
    first = upsert_recipe(
        db_session, storage, make_payload(steps=["One", "Two"]),
        RecipeUploads(steps=[_png("1.png"), _png("2.png")]),
    )
    db_session.expire_all()
    recipe = db_session.get(Recipe, first.recipe_id)
    first_photo_key = recipe.steps[0].photo.storage_key
    second_photo_key = recipe.steps[1].photo.storage_key

    upsert_recipe(
        db_session, storage, make_payload(steps=["One", "Two"]),
        RecipeUploads(steps=[None, _png("2b.png")]),
        action=UpsertAction.edit,
    )

    db_session.expire_all()
    recipe = db_session.get(Recipe, first.recipe_id)
    assert recipe.steps[0].photo.storage_key == first_photo_key
    assert recipe.steps[1].photo.storage_key != second_photo_key
    files = _stored_files(storage)
    assert second_photo_key not in files
    assert len(files) == 2
