"""Shared fixtures for the estate sales sync tests."""
import boto3
import pytest
from moto import mock_aws


_SAMPLE_PAGE_ONE = """
<html>
    <body>
        <article class="estate-card">
            <h2>Estate Sale A</h2>
            <div class="location">123 Main St, Palmdale, CA 93550</div>
            <div class="sale-dates">Nov 8</div>
            <a class="estate-title" href="/CA/Palmdale/93550/4412345">Estate Sale A</a>
        </article>
    </body>
</html>
"""

_SAMPLE_PAGE_TWO = """
<html>
    <body>
        <article class="estate-card">
            <h2>Estate Sale A</h2>
            <div class="location">123 Main St, Palmdale, CA 93550</div>
            <div class="sale-dates">Nov 8</div>
            <div class="sale-hours">9am-3pm</div>
            <span class="distance">4.2 mi</span>
            <a class="estate-title" href="/CA/Palmdale/93550/4412345">Estate Sale A</a>
        </article>
    </body>
</html>
"""


_UNLINKED_PAGE_ONE = """
<html>
    <body>
        <article class="estate-card">
            <h2>Estate Sale B</h2>
            <div class="location">77 Oak Ave, Lancaster, CA 93534</div>
            <div class="sale-dates">Nov 8</div>
        </article>
    </body>
</html>
"""

_UNLINKED_PAGE_TWO = """
<html>
    <body>
        <article class="estate-card">
            <h2>Estate Sale B</h2>
            <div class="location">77 Oak Ave, Lancaster, CA 93534</div>
            <div class="sale-dates">Nov 8</div>
            <div class="sale-hours">10am-4pm</div>
        </article>
    </body>
</html>
"""


@pytest.fixture
def unlinked_page_one():
    """Search page listing Estate Sale B with no sale id or hours."""
    return _UNLINKED_PAGE_ONE


@pytest.fixture
def unlinked_page_two():
    """Search page re-listing Estate Sale B with non-default hours."""
    return _UNLINKED_PAGE_TWO


@pytest.fixture
def sample_page_one():
    """Search page listing Estate Sale A without hours."""
    return _SAMPLE_PAGE_ONE


@pytest.fixture
def sample_page_two():
    """Search page re-listing Estate Sale A with hours and distance."""
    return _SAMPLE_PAGE_TWO


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never talks to a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def dynamodb():
    """Mock DynamoDB with the listing and audit tables created."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')

        resource.create_table(
            TableName='test-estate-sales',
            KeySchema=[
                {'AttributeName': 'listing_key', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'listing_key', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        resource.create_table(
            TableName='test-estate-sales-runs',
            KeySchema=[
                {'AttributeName': 'run_id', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'run_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield resource
