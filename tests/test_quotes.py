"""
Quote submission and response tests
"""
import json

import pytest

import quotes
from errors import AlreadyLocked, Forbidden, StateConflict, ValidationError
from models import db, Job


class TestSubmitQuote:
    """Test provider quote submission"""

    def test_provider_submits_quote(self, client, job, provider_headers):
        response = client.post(
            f'/api/jobs/{job.id}/quote',
            headers=provider_headers,
            json={'labor_cost': 1500, 'materials_cost': 350.5, 'breakdown': 'Replace trap and seal'},
        )
        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['ok'] is True
        assert data['job']['quote']['total'] == 1850.5
        assert data['job']['quote']['locked'] is True
        assert data['job']['quote']['accepted'] is False
        assert data['request_id'].startswith('req_')

    def test_materials_default_to_zero(self, job, provider_id):
        job = quotes.submit_quote(job.id, provider_id, labor=900)
        assert job.quote_materials == 0.0
        assert job.quote_total == 900.0

    def test_second_submission_is_locked(self, job, provider_id):
        quotes.submit_quote(job.id, provider_id, labor=900)
        with pytest.raises(AlreadyLocked):
            quotes.submit_quote(job.id, provider_id, labor=1200)
        assert db.session.get(Job, job.id).quote_total == 900.0

    def test_locked_maps_to_409(self, client, job, provider_id, provider_headers):
        quotes.submit_quote(job.id, provider_id, labor=900)
        response = client.post(
            f'/api/jobs/{job.id}/quote', headers=provider_headers, json={'labor_cost': 1000}
        )
        assert response.status_code == 409
        data = json.loads(response.data)
        assert data['ok'] is False
        assert data['error_code'] == 'already_locked'

    @pytest.mark.parametrize('labor,materials', [
        (0, 0),
        (-10, 0),
        (100, -1),
        ('abc', 0),
        (True, 0),
        (float('nan'), 0),
        (999999, 2),
    ])
    def test_invalid_amounts(self, job, provider_id, labor, materials):
        with pytest.raises(ValidationError):
            quotes.submit_quote(job.id, provider_id, labor=labor, materials=materials)

    def test_breakdown_too_long(self, job, provider_id):
        with pytest.raises(ValidationError):
            quotes.submit_quote(job.id, provider_id, labor=100, breakdown='x' * 2001)

    def test_customer_cannot_quote(self, job, customer_id):
        with pytest.raises(Forbidden):
            quotes.submit_quote(job.id, customer_id, labor=100)

    def test_stranger_rejected_before_validation(self, client, job, stranger_headers):
        response = client.post(
            f'/api/jobs/{job.id}/quote', headers=stranger_headers, json={'labor_cost': -5}
        )
        assert response.status_code == 403

    def test_in_progress_job_cannot_be_quoted(self, make_job, provider_id):
        job = make_job(status='in_progress')
        with pytest.raises(StateConflict):
            quotes.submit_quote(job.id, provider_id, labor=100)


class TestRespondToQuote:
    """Test customer accept/reject"""

    @pytest.fixture
    def submitted(self, job, provider_id):
        return quotes.submit_quote(job.id, provider_id, labor=800, materials=200)

    def test_accept_confirms_job(self, client, submitted, customer_headers):
        response = client.post(
            f'/api/jobs/{submitted.id}/quote/response',
            headers=customer_headers,
            json={'accepted': True},
        )
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['job']['status'] == 'confirmed'
        assert data['job']['quote']['accepted'] is True
        assert data['job']['quote']['accepted_at'] is not None

    def test_reject_cancels_job(self, submitted, customer_id):
        job = quotes.respond_to_quote(submitted.id, customer_id, False)
        assert job.status == 'cancelled'
        assert job.quote_accepted is False

    def test_accepting_twice_conflicts(self, submitted, customer_id):
        quotes.respond_to_quote(submitted.id, customer_id, True)
        with pytest.raises(StateConflict):
            quotes.respond_to_quote(submitted.id, customer_id, True)

    def test_no_quote_yet(self, job, customer_id):
        with pytest.raises(StateConflict):
            quotes.respond_to_quote(job.id, customer_id, True)

    def test_provider_cannot_accept(self, submitted, provider_id):
        with pytest.raises(Forbidden):
            quotes.respond_to_quote(submitted.id, provider_id, True)

    def test_accepted_must_be_boolean(self, submitted, customer_id):
        with pytest.raises(ValidationError):
            quotes.respond_to_quote(submitted.id, customer_id, 'yes')


class TestQuoteStatus:
    """Test quote status reads"""

    def test_both_parties_can_read(self, client, job, provider_id, customer_headers, provider_headers):
        quotes.submit_quote(job.id, provider_id, labor=500)
        for headers in (customer_headers, provider_headers):
            response = client.get(f'/api/jobs/{job.id}/quote', headers=headers)
            assert response.status_code == 200
            status = json.loads(response.data)['quote_status']
            assert status['total'] == 500.0
            assert status['submitted'] is True

    def test_stranger_cannot_read(self, client, job, stranger_headers):
        response = client.get(f'/api/jobs/{job.id}/quote', headers=stranger_headers)
        assert response.status_code == 403
