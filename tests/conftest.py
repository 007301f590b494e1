"""Pytest fixtures and mock data for testing."""
import os
from unittest.mock import Mock

import pytest

# Keep tests off real services before the app modules are imported
os.environ.pop('DATABASE_URL', None)
os.environ.pop('SUPABASE_URL', None)
os.environ.pop('SUPABASE_ANON_KEY', None)
os.environ['OPENAI_API_KEY'] = 'test-openai-key'

from fastapi.testclient import TestClient

from app.backend.auth import AuthIdentity, AuthRejected
from app.backend.evaluation import EvaluationOk
from app.backend.storage import InMemoryStartupStore
from app.backend.web import create_app, get_evaluator


VALID_TOKEN = 'valid-session-token'


class FakeAuthClient:
    """In-process stand-in for the identity provider."""

    provider_name = 'fake'

    def __init__(self):
        self.accounts = {'owner@example.com': ('user-1', 'hunter22')}
        self.signed_out = []

    def get_user(self, access_token):
        if access_token == VALID_TOKEN:
            return AuthIdentity(user_id='user-1', email='owner@example.com', access_token=access_token)
        return None

    def sign_up(self, email, password):
        if email in self.accounts:
            raise AuthRejected('User already registered')
        user_id = f'user-{len(self.accounts) + 1}'
        self.accounts[email] = (user_id, password)
        return AuthIdentity(user_id=user_id, email=email, access_token=VALID_TOKEN)

    def sign_in(self, email, password):
        account = self.accounts.get(email)
        if account is None or account[1] != password:
            raise AuthRejected('Invalid login credentials')
        return AuthIdentity(user_id=account[0], email=email, access_token=VALID_TOKEN)

    def sign_out(self, access_token):
        self.signed_out.append(access_token)


# ============ MOCK DATA FIXTURES ============

@pytest.fixture
def mock_evaluation():
    """A well-formed evaluation as returned by the completion API."""
    return {
        'scores': {
            'marketPotential': 8,
            'teamStrength': 7,
            'productInnovation': 6,
            'competitiveAdvantage': 5,
            'financialViability': 4,
        },
        'analysis': {
            'strengths': ['Experienced founders'],
            'weaknesses': ['Thin revenue history'],
            'opportunities': ['Open banking regulation'],
            'threats': ['Incumbent banks'],
        },
        'recommendations': ['Close a lead investor for the seed round'],
        'riskLevel': 'medium',
        'investmentPotential': 'moderate',
    }


@pytest.fixture
def mock_profile_payload():
    """Complete profile body as posted by the submission form."""
    return {
        'organizationName': 'Acme',
        'url': 'https://acme.example',
        'location': 'Lisbon, Portugal',
        'industries': ['fintech', 'payments'],
        'industryGroups': ['financial services'],
        'fundingRounds': 2,
        'lastFunding': 1500000.0,
        'lastFundingType': 'Seed',
        'equity': 12.5,
        'totalFunding': 2000000,
        'valuation': 12000000.0,
        'lastValuationDate': '2024-03-01',
        'revenue': 350000.0,
        'growth': 18.5,
        'foundersCount': 2,
        'employeesCount': 14,
        'founders': [
            {
                'name': 'Ana Costa',
                'role': 'CEO',
                'linkedIn': 'https://linkedin.com/in/anacosta',
                'education': 'MSc Finance',
                'experience': '8 years in payments',
                'previousCompanies': ['Stripe'],
                'achievements': ['Forbes 30 under 30'],
            }
        ],
        'topInvestors': ['Seedcamp', 'Point Nine'],
        'monthlyMetrics': [
            {'date': '2024-01', 'revenue': 25000.0, 'users': 1200, 'growth': 12.0, 'burn': 80000.0},
            {'date': '2024-02', 'revenue': 29000.0, 'users': 1400, 'growth': 16.0, 'burn': 82000.0},
        ],
        'keyMetrics': [
            {'metric': 'MRR', 'value': '$29k', 'change': 16.0, 'timeframe': 'MoM'},
            {'metric': 'Churn', 'value': 3.1, 'change': -0.4, 'timeframe': 'MoM'},
        ],
    }


# ============ SERVICE FIXTURES ============

@pytest.fixture
def startup_store():
    return InMemoryStartupStore()


@pytest.fixture
def auth_client():
    return FakeAuthClient()


@pytest.fixture
def evaluator(mock_evaluation):
    """Evaluation client stub returning a fixed evaluation."""
    return Mock(return_value=EvaluationOk(evaluation=mock_evaluation))


@pytest.fixture
def app(startup_store, auth_client, evaluator):
    application = create_app()
    application.state.startup_store = startup_store
    application.state.auth_client = auth_client
    application.dependency_overrides[get_evaluator] = lambda: evaluator
    return application


@pytest.fixture
def client(app):
    """Test client. The lifespan is not run, so the injected state is kept."""
    return TestClient(app)


@pytest.fixture
def session_token():
    return VALID_TOKEN


@pytest.fixture
def auth_headers(session_token):
    return {'Authorization': f'Bearer {session_token}'}
