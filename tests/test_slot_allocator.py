from datetime import datetime, timedelta

import pytest

from app.errors import AuthorizationDenied, Conflict, NotFound, ValidationError
from app.models import Consultation, Firm, FirmSlot, Service, ServiceSlot, User
from app.services import slot_allocator
from app.utils.time_utils import to_utc_z, utcnow


def _payload(**overrides):
    payload = {
        "name": "Zhang San",
        "phone": "13800138000",
        "email": "Zhang@Example.com",
        "firm_id": "1",
        "service_id": "2",
        "time": (utcnow() + timedelta(days=1)).isoformat() + "Z",
        "remark": "  call after 5pm ",
    }
    payload.update(overrides)
    return payload


@pytest.mark.booking
class TestNormalizeAndValidate:
    """Input validation happens before any database access."""

    def test_legacy_field_names(self):
        data = slot_allocator.normalize_booking_payload(
            {
                "name": "A",
                "phone": "13800138000",
                "firmId": 7,
                "serviceId": 9,
                "appointmentTime": "2030-01-01T00:00:00Z",
                "message": "hello",
            }
        )

        assert data["firm_id"] == 7
        assert data["service_id"] == 9
        assert data["time"] == "2030-01-01T00:00:00Z"
        assert data["remark"] == "hello"

    def test_canonical_name_wins_over_alias(self):
        data = slot_allocator.normalize_booking_payload({"firm_id": 1, "firmId": 2})

        assert data["firm_id"] == 1

    def test_valid_request(self):
        booking = slot_allocator.validate_booking(_payload())

        assert booking.firm_id == 1
        assert booking.service_id == 2
        assert booking.email == "zhang@example.com"
        assert booking.remark == "call after 5pm"
        assert booking.preferred_time.microsecond == 0

    def test_missing_fields_list_required(self):
        with pytest.raises(ValidationError) as exc:
            slot_allocator.validate_booking(_payload(name="", phone=None))

        assert exc.value.field == "name"
        assert exc.value.extra["required"] == list(slot_allocator.REQUIRED_FIELDS)

    @pytest.mark.parametrize(
        "phone", ["12345", "23800138000", "1380013800", "138001380001", "phone"]
    )
    def test_bad_phone(self, phone):
        with pytest.raises(ValidationError) as exc:
            slot_allocator.validate_booking(_payload(phone=phone))

        assert exc.value.field == "phone"

    @pytest.mark.parametrize("phone", ["13800138000", "19912345678", "0298765432"])
    def test_good_phone(self, phone):
        assert slot_allocator.validate_booking(_payload(phone=phone)).phone == phone

    def test_bad_email(self):
        with pytest.raises(ValidationError) as exc:
            slot_allocator.validate_booking(_payload(email="zhang@example"))

        assert exc.value.field == "email"

    def test_email_is_optional(self):
        assert slot_allocator.validate_booking(_payload(email="")).email is None

    @pytest.mark.parametrize(
        "time",
        [
            lambda: (utcnow() - timedelta(minutes=1)).isoformat() + "Z",
            lambda: to_utc_z(utcnow() - timedelta(days=30)),
            lambda: "yesterday",
        ],
    )
    def test_bad_time(self, time):
        with pytest.raises(ValidationError) as exc:
            slot_allocator.validate_booking(_payload(time=time()))

        assert exc.value.field == "time"

    def test_offset_time_is_normalized_to_utc(self):
        now = utcnow().replace(microsecond=0)
        booking = slot_allocator.validate_booking(
            _payload(time="2030-01-01T10:00:00+08:00"), now=now
        )

        assert to_utc_z(booking.preferred_time) == "2030-01-01T02:00:00Z"

    def test_epoch_milliseconds(self):
        target = utcnow().replace(microsecond=0) + timedelta(days=2)
        millis = int((target - datetime(1970, 1, 1)).total_seconds() * 1000)

        booking = slot_allocator.validate_booking(_payload(time=millis))

        assert booking.preferred_time == target

    @pytest.mark.parametrize("value", ["abc", "0", "-3"])
    def test_bad_ids(self, value):
        with pytest.raises(ValidationError) as exc:
            slot_allocator.validate_booking(_payload(firm_id=value))

        assert exc.value.field == "firm_id"


@pytest.mark.booking
class TestCreateBooking:
    """Persistence and slot retirement."""

    def _request(self, firm, service, when, **extra):
        return slot_allocator.validate_booking(
            _payload(firm_id=firm.id, service_id=service.id, time=to_utc_z(when), **extra)
        )

    def test_retires_exactly_the_service_slot(
        self, db_session, sample_firm, sample_service, service_slots
    ):
        result = slot_allocator.create_booking(
            self._request(sample_firm, sample_service, service_slots[1])
        )

        assert result.slot_retired is True
        assert result.consultation.status == "pending"
        assert result.consultation.firm_name == sample_firm.name
        assert result.consultation.service_name == sample_service.title
        remaining = [s.slot_at for s in db_session.query(ServiceSlot).order_by(ServiceSlot.slot_at)]
        assert remaining == [service_slots[0], service_slots[2]]

    def test_falls_back_to_firm_slot(
        self, db_session, sample_firm, sample_service, firm_slots
    ):
        result = slot_allocator.create_booking(
            self._request(sample_firm, sample_service, firm_slots[0])
        )

        assert result.slot_retired is True
        assert [s.slot_at for s in db_session.query(FirmSlot)] == [firm_slots[1]]

    def test_service_pool_checked_before_firm_pool(
        self, db_session, sample_firm, sample_service, firm_slots
    ):
        db_session.add(ServiceSlot(service_id=sample_service.id, slot_at=firm_slots[0]))
        db_session.commit()

        slot_allocator.create_booking(self._request(sample_firm, sample_service, firm_slots[0]))

        assert db_session.query(ServiceSlot).count() == 0
        assert db_session.query(FirmSlot).count() == 2

    def test_time_outside_inventory_is_accepted(
        self, db_session, sample_firm, sample_service, service_slots
    ):
        result = slot_allocator.create_booking(
            self._request(sample_firm, sample_service, service_slots[0] + timedelta(minutes=30))
        )

        assert result.slot_retired is False
        assert db_session.query(ServiceSlot).count() == 3
        assert db_session.query(Consultation).count() == 1

    def test_concurrent_claim_is_a_conflict(
        self, db_session, monkeypatch, sample_firm, sample_service, service_slots
    ):
        # Another booking removed the slot between the read and the delete.
        monkeypatch.setattr(slot_allocator, "_slot_exists", lambda *a: True)
        db_session.query(ServiceSlot).delete()
        db_session.commit()

        with pytest.raises(Conflict) as exc:
            slot_allocator.create_booking(
                self._request(sample_firm, sample_service, service_slots[0])
            )

        assert exc.value.code == "slot_unavailable"
        assert db_session.query(Consultation).count() == 0

    def test_unknown_firm(self, sample_service, future_time):
        request = slot_allocator.validate_booking(
            _payload(firm_id=999, service_id=sample_service.id, time=to_utc_z(future_time))
        )

        with pytest.raises(NotFound) as exc:
            slot_allocator.create_booking(request)
        assert exc.value.message == "Firm not found"

    def test_service_of_another_firm(self, db_session, sample_service, future_time):
        other = Firm(name="Other", slug="other")
        db_session.add(other)
        db_session.commit()

        with pytest.raises(NotFound):
            slot_allocator.create_booking(self._request(other, sample_service, future_time))

    def test_service_linked_to_many_firms(self, db_session, sample_firm, future_time):
        shared = Service(title="Notary", firm_id=None)
        shared.firms.append(sample_firm)
        db_session.add(shared)
        db_session.commit()

        result = slot_allocator.create_booking(self._request(sample_firm, shared, future_time))

        assert result.consultation.service_id == shared.id

    def test_links_user(self, sample_firm, sample_service, sample_user, future_time):
        result = slot_allocator.create_booking(
            self._request(sample_firm, sample_service, future_time), user=sample_user
        )

        assert result.consultation.user_id == sample_user.id
        assert result.consultation.source == "consultation"


@pytest.mark.booking
class TestStatusAndListing:
    @pytest.fixture
    def booking(self, sample_firm, sample_service, sample_user, future_time):
        request = slot_allocator.validate_booking(
            _payload(
                firm_id=sample_firm.id,
                service_id=sample_service.id,
                time=to_utc_z(future_time),
            )
        )
        return slot_allocator.create_booking(request, user=sample_user).consultation

    def test_owner_can_update(self, booking, sample_user):
        updated = slot_allocator.update_status(sample_user, booking.id, "converted")

        assert updated.status == "converted"

    def test_admin_can_update(self, booking, admin_user):
        assert slot_allocator.update_status(admin_user, booking.id, "contacted").status == "contacted"

    def test_stranger_cannot_update(self, booking, other_user):
        with pytest.raises(AuthorizationDenied):
            slot_allocator.update_status(other_user, booking.id, "cancelled")

    def test_unknown_status(self, booking, sample_user):
        with pytest.raises(ValidationError) as exc:
            slot_allocator.update_status(sample_user, booking.id, "archived")

        assert exc.value.field == "status"

    def test_unknown_booking(self, sample_user):
        with pytest.raises(NotFound):
            slot_allocator.update_status(sample_user, 12345, "pending")

    def test_list_pagination(self, sample_firm, sample_service, future_time):
        for i in range(5):
            slot_allocator.create_booking(
                slot_allocator.validate_booking(
                    _payload(
                        firm_id=sample_firm.id,
                        service_id=sample_service.id,
                        time=to_utc_z(future_time + timedelta(hours=i)),
                    )
                )
            )

        page = slot_allocator.list_consultations(page=2, size=2)

        assert page["total"] == 5
        assert page["pages"] == 3
        assert page["page"] == 2
        assert len(page["items"]) == 2

    def test_list_size_is_capped(self):
        assert slot_allocator.list_consultations(size=1000)["size"] == slot_allocator.MAX_PAGE_SIZE

    def test_bookings_for_user_match_email(self, db_session, booking, sample_firm, sample_service, future_time):
        guest = slot_allocator.validate_booking(
            _payload(
                firm_id=sample_firm.id,
                service_id=sample_service.id,
                time=to_utc_z(future_time + timedelta(days=1)),
                email="client@example.com",
            )
        )
        slot_allocator.create_booking(guest)

        user = db_session.query(User).filter_by(username="client").one()
        assert len(slot_allocator.bookings_for_user(user)) == 2


@pytest.mark.booking
class TestInventory:
    def test_add_slots_dedupes(self, sample_firm, future_time):
        times = [to_utc_z(future_time), future_time.isoformat(), to_utc_z(future_time + timedelta(hours=1))]

        result = slot_allocator.add_slots(sample_firm, times)

        assert result == [to_utc_z(future_time), to_utc_z(future_time + timedelta(hours=1))]
        assert slot_allocator.add_slots(sample_firm, [to_utc_z(future_time)]) == result

    def test_add_slots_rejects_past(self, sample_service):
        with pytest.raises(ValidationError):
            slot_allocator.add_slots(sample_service, [to_utc_z(utcnow() - timedelta(hours=1))])

    def test_add_slots_rejects_empty(self, sample_service):
        with pytest.raises(ValidationError):
            slot_allocator.add_slots(sample_service, [])

    def test_remove_slot(self, db_session, sample_service, service_slots):
        assert slot_allocator.remove_slot(sample_service, to_utc_z(service_slots[0])) is True
        assert slot_allocator.remove_slot(sample_service, to_utc_z(service_slots[0])) is False

        db_session.refresh(sample_service)
        assert slot_allocator.inventory(sample_service) == [to_utc_z(t) for t in service_slots[1:]]

    def test_prune_expired_slots(self, db_session, sample_service, service_slots):
        db_session.add(ServiceSlot(service_id=sample_service.id, slot_at=utcnow() - timedelta(hours=1)))
        db_session.commit()

        assert slot_allocator.prune_expired_slots() == 1
        assert db_session.query(ServiceSlot).count() == len(service_slots)
