"""Alta de peliculas desde el mapa (SubmissionWorkflow)."""

import asyncio
import io
from datetime import date

import pytest
from PIL import Image

from filmmap.core.errors import (
    ConflictError,
    FilmMapError,
    FilmValidationError,
    MalformedDataError,
    MissingLocationError,
    SessionExpiredError,
)
from filmmap.schemas.films import FilmStatus
from filmmap.schemas.map import DraftFields
from filmmap.services.submission import SubmissionWorkflow

from conftest import FakeGeocoder, FakeIdentity, make_film, make_session, ready_engine


def png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), (255, 105, 180)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def session():
    return make_session("user-1", "token-1")


@pytest.fixture
def identity(session):
    return FakeIdentity(session)


@pytest.fixture
def engine(session):
    return ready_engine(geocoder=FakeGeocoder("Rennes, Brittany, France"), session=session)


@pytest.fixture
def workflow(engine, repository, identity):
    return SubmissionWorkflow(engine, repository, identity, engine.auth_state, max_image_bytes=5 * 1024 * 1024)


def pick_location(engine, lng=-2.93, lat=48.20):
    asyncio.run(engine.handle_click(lng, lat))
    engine.confirm_pending()


class TestPreconditions:

    def test_no_location_never_reaches_repository(self, workflow, repository, identity):
        workflow.update_draft(DraftFields(title="Nowhere Film"))
        with pytest.raises(MissingLocationError) as exc_info:
            asyncio.run(workflow.submit())
        assert exc_info.value.message == "Please select a location on the map first."
        assert repository.created == []
        assert identity.calls == []

    def test_unconfirmed_location(self, engine, workflow, repository):
        asyncio.run(engine.handle_click(-2.93, 48.2))
        with pytest.raises(MissingLocationError):
            asyncio.run(workflow.submit())
        assert repository.created == []

    def test_signed_out(self, repository, identity):
        engine = ready_engine(read_only=False)
        workflow = SubmissionWorkflow(engine, repository, identity, engine.auth_state, max_image_bytes=1024)
        pick_location(engine)
        with pytest.raises(SessionExpiredError):
            asyncio.run(workflow.submit())
        assert repository.created == []

    def test_invalid_year_before_any_remote_call(self, engine, workflow, repository, identity):
        pick_location(engine)
        workflow.update_draft(DraftFields(year="nineteen ninety"))
        with pytest.raises(FilmValidationError):
            asyncio.run(workflow.submit())
        assert identity.calls == []
        assert repository.created == []

    def test_session_revalidated_before_commit(self, engine, repository):
        # El token de la vista ya no es aceptado por el proveedor
        workflow = SubmissionWorkflow(engine, repository, FakeIdentity(), engine.auth_state, max_image_bytes=1024)
        pick_location(engine)
        with pytest.raises(SessionExpiredError):
            asyncio.run(workflow.submit())
        assert repository.created == []
        assert engine.pending is not None


class TestSubmit:

    def test_round_trip_keeps_coordinates(self, engine, workflow, repository):
        pick_location(engine, -2.93, 48.20)
        workflow.update_draft(DraftFields(title="Breizh Queer", director="A. Le Goff", year="1994"))

        film = asyncio.run(workflow.submit())
        assert film.status == FilmStatus.PENDING
        assert film.year == 1994
        assert film.location == "Rennes, Brittany, France"

        mine = repository.list_for_user("user-1")
        assert len(mine) == 1
        assert mine[0].status == FilmStatus.PENDING
        assert (mine[0].coordinates.lng, mine[0].coordinates.lat) == pytest.approx((-2.93, 48.20))

    def test_success_resets_form_and_marker(self, engine, workflow):
        pick_location(engine)
        workflow.update_draft(DraftFields(title="Tomboy"))
        film = asyncio.run(workflow.submit())

        assert engine.pending is None
        assert engine.widget.markers == []
        assert workflow.draft == DraftFields()
        assert not workflow.submitting
        assert engine.find_film(film.id) is not None
        assert engine.feature_count() == 1

    def test_defaults(self, engine, workflow, repository):
        pick_location(engine)
        asyncio.run(workflow.submit())
        draft = repository.created[0]
        assert draft.title == "Untitled Film"
        assert draft.description == "No description provided"
        assert draft.location == "Rennes, Brittany, France"
        assert draft.year == date.today().year
        assert draft.director is None
        assert draft.user_id == "user-1"

    def test_merge_does_not_duplicate(self, engine, workflow):
        asyncio.run(engine.set_films([make_film(title="Existing", coordinates={"lng": 100.0, "lat": 10.0})]))
        pick_location(engine)
        workflow.update_draft(DraftFields(title="Fresh"))
        film = asyncio.run(workflow.submit())
        asyncio.run(engine.merge_film(film))
        assert engine.feature_count() == 2

    def test_image_is_uploaded(self, engine, workflow, assets):
        pick_location(engine)
        workflow.attach_image(png_bytes(), "image/png")
        film = asyncio.run(workflow.submit())
        assert film.image_url.endswith(".png")
        assert len(assets.files) == 1


class TestInterleaving:
    """El usuario sigue usando el mapa mientras el envio espera a la red."""

    def _submit_while(self, workflow, identity, during):
        async def scenario():
            identity.gate = asyncio.Event()
            task = asyncio.create_task(workflow.submit())
            await asyncio.sleep(0)
            await during()
            identity.gate.set()
            return await task
        return asyncio.run(scenario())

    def test_new_click_during_submit_is_not_stored(self, engine, workflow, repository, identity):
        pick_location(engine, -2.93, 48.20)

        async def click_elsewhere():
            await engine.handle_click(100.0, 10.0)

        with pytest.raises(MissingLocationError):
            self._submit_while(workflow, identity, click_elsewhere)
        assert repository.created == []
        assert not workflow.submitting
        # El punto nuevo queda esperando su propia confirmacion
        assert (engine.pending.coordinates.lng, engine.pending.coordinates.lat) == (100.0, 10.0)
        assert not engine.pending.confirmed

    def test_sign_out_during_submit(self, engine, workflow, repository, identity):
        pick_location(engine)

        async def sign_out():
            engine.auth_state.sign_out()

        with pytest.raises(SessionExpiredError) as exc_info:
            self._submit_while(workflow, identity, sign_out)
        assert exc_info.value.message == "You must be logged in to add a film."
        assert repository.created == []
        assert engine.pending is None

    def test_cancelled_location_skips_upload(self, engine, workflow, repository, identity, assets):
        pick_location(engine)
        workflow.attach_image(png_bytes(), "image/png")

        async def cancel():
            engine.cancel_pending()

        with pytest.raises(MissingLocationError):
            self._submit_while(workflow, identity, cancel)
        assert repository.created == []
        assert assets.files == {}
        assert assets.deleted == []

    def test_label_arriving_after_confirm_keeps_submission(self, engine, workflow, repository, identity):
        pick_location(engine, -2.93, 48.20)

        async def relabel():
            engine.pending = engine.pending.model_copy(update={"label": "Rennes"})

        film = self._submit_while(workflow, identity, relabel)
        assert (film.coordinates.lng, film.coordinates.lat) == (-2.93, 48.20)
        assert repository.created[0].coordinates.lng == -2.93
        assert repository.created[0].location == "Rennes"
        assert engine.pending is None


class TestFailures:

    def test_duplicate_title(self, engine, workflow, repository):
        repository.add(make_film(title="Carol"))
        pick_location(engine)
        workflow.update_draft(DraftFields(title="Carol"))
        with pytest.raises(ConflictError) as exc_info:
            asyncio.run(workflow.submit())
        assert "already exists" in exc_info.value.message
        # El usuario puede corregir y reintentar
        assert engine.pending is not None
        assert workflow.draft.title == "Carol"

    def test_failed_create_discards_uploaded_image(self, engine, workflow, repository, assets):
        repository.fail_create = MalformedDataError()
        pick_location(engine)
        workflow.attach_image(png_bytes(), "image/png")
        with pytest.raises(MalformedDataError):
            asyncio.run(workflow.submit())
        assert assets.files == {}
        assert len(assets.deleted) == 1

    def test_unknown_error_is_generic(self, engine, workflow, repository):
        repository.fail_create = RuntimeError("socket closed")
        pick_location(engine)
        with pytest.raises(FilmMapError) as exc_info:
            asyncio.run(workflow.submit())
        assert type(exc_info.value) is FilmMapError
        assert exc_info.value.message == "Failed to add film: unknown error. Please try again."
        assert not workflow.submitting

    def test_attach_rejects_non_image(self, workflow):
        with pytest.raises(FilmValidationError):
            workflow.attach_image(b"plain text", "text/plain")
        assert workflow.image is None

    def test_attach_rejects_large_file(self, engine, repository, identity):
        workflow = SubmissionWorkflow(engine, repository, identity, engine.auth_state, max_image_bytes=10)
        with pytest.raises(FilmValidationError):
            workflow.attach_image(png_bytes(), "image/png")
