"""
Tests for components and materials of component/material list answers.
"""
import pytest

from app.core.errors import LockedError, TransitionError, ValidationError
from app.db.models import (
    PIRResponseComponent, PIRResponseComponentMaterial, PIRStatus, ResponseStatus,
)
from app.services import components as component_service
from app.services import responses as response_service
from app.services.components import parse_percentage, parse_recyclable, recyclable_to_wire


@pytest.fixture
def component_response(db, world, pir_factory):
    request = pir_factory(tags=[world.packaging])
    response, _ = response_service.ensure_placeholder_response(db, request.id, world.q_components.id)
    db.commit()
    return response


class TestParsing:
    @pytest.mark.parametrize("raw,expected", [(True, True), (False, False), ("true", True), ("FALSE", False)])
    def test_recyclable_accepts_booleans_and_strings(self, raw, expected):
        assert parse_recyclable(raw) is expected

    def test_recyclable_rejects_other_values(self):
        with pytest.raises(ValidationError):
            parse_recyclable("yes")

    def test_recyclable_wire_format(self):
        assert recyclable_to_wire(True) == "true"
        assert recyclable_to_wire(False) == "false"

    @pytest.mark.parametrize("raw,expected", [(None, None), ("", None), (0, 0.0), ("35.5", 35.5), (100, 100.0)])
    def test_percentage_within_bounds(self, raw, expected):
        assert parse_percentage(raw) == expected

    @pytest.mark.parametrize("raw", [-1, 100.5, "abc", True])
    def test_percentage_out_of_bounds_is_rejected(self, raw):
        with pytest.raises(ValidationError):
            parse_percentage(raw)


class TestComponents:
    def test_components_are_appended_in_order(self, db, component_response):
        tray = component_service.add_component(db, component_response, "Tray", "Primary")
        lid = component_service.add_component(db, component_response, " Lid ")
        db.commit()

        assert (tray.order_index, lid.order_index) == (0, 1)
        assert lid.component_name == "Lid"
        assert lid.position is None
        assert [c.id for c in component_service.list_components(db, component_response.id)] == [tray.id, lid.id]

    def test_component_name_is_required(self, db, component_response):
        with pytest.raises(ValidationError):
            component_service.add_component(db, component_response, "  ")

    def test_components_need_a_component_question(self, db, world, pir_factory):
        request = pir_factory()
        response, _ = response_service.ensure_placeholder_response(db, request.id, world.q_name.id)
        with pytest.raises(ValidationError):
            component_service.add_component(db, response, "Tray")

    def test_update_only_changes_given_fields(self, db, component_response):
        tray = component_service.add_component(db, component_response, "Tray", "Primary")
        component_service.update_component(db, tray, component_name="Base tray")
        assert (tray.component_name, tray.position) == ("Base tray", "Primary")

    def test_delete_removes_materials(self, db, component_response):
        tray = component_service.add_component(db, component_response, "Tray")
        component_service.add_material(db, tray, "PET", percentage=90, recyclable="true")
        component_service.add_material(db, tray, "Ink", percentage="10")
        db.commit()
        tray_id = tray.id

        clear = component_service.delete_component(db, tray, selected_component_id=tray_id)
        db.commit()

        assert clear is True
        assert db.query(PIRResponseComponent).count() == 0
        assert db.query(PIRResponseComponentMaterial).filter(
            PIRResponseComponentMaterial.component_id == tray_id
        ).count() == 0

    def test_delete_other_component_keeps_selection(self, db, component_response):
        tray = component_service.add_component(db, component_response, "Tray")
        lid = component_service.add_component(db, component_response, "Lid")
        assert component_service.delete_component(db, lid, selected_component_id=tray.id) is False

    def test_locked_after_approval(self, db, component_response):
        tray = component_service.add_component(db, component_response, "Tray")
        component_response.status = ResponseStatus.APPROVED
        db.commit()

        with pytest.raises(LockedError):
            component_service.add_material(db, tray, "PET")

    def test_no_edits_once_submitted(self, db, component_response):
        component_response.pir.status = PIRStatus.SUBMITTED
        db.commit()
        with pytest.raises(TransitionError):
            component_service.add_component(db, component_response, "Tray")


class TestMaterials:
    def test_add_material(self, db, component_response):
        tray = component_service.add_component(db, component_response, "Tray")
        pet = component_service.add_material(db, tray, "PET", percentage="85", recyclable="true")
        ink = component_service.add_material(db, tray, "Ink")

        assert (pet.percentage, pet.recyclable, pet.order_index) == (85.0, True, 0)
        assert (ink.percentage, ink.recyclable, ink.order_index) == (None, False, 1)

    def test_out_of_range_percentage_writes_nothing(self, db, component_response):
        tray = component_service.add_component(db, component_response, "Tray")
        with pytest.raises(ValidationError):
            component_service.add_material(db, tray, "PET", percentage=120)
        assert component_service.list_materials(db, tray.id) == []

    def test_update_material(self, db, component_response):
        tray = component_service.add_component(db, component_response, "Tray")
        pet = component_service.add_material(db, tray, "PET", percentage=50)

        component_service.update_material(db, pet, percentage=None, recyclable="true")

        assert (pet.material_name, pet.percentage, pet.recyclable) == ("PET", None, True)

    def test_delete_material(self, db, component_response):
        tray = component_service.add_component(db, component_response, "Tray")
        pet = component_service.add_material(db, tray, "PET")
        component_service.delete_material(db, pet)
        assert component_service.list_materials(db, tray.id) == []

    def test_components_count_towards_completion(self, db, world, component_response):
        assert not response_service.response_answered(world.q_components, component_response)
        component_service.add_component(db, component_response, "Tray")
        db.commit()
        assert response_service.response_answered(world.q_components, component_response)
