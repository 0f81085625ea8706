"""Microsoft Graph API client wrapper."""

from azure.identity import ClientSecretCredential
from msgraph import GraphServiceClient

from m365admin.core.config import get_graph_credentials

GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]


def get_graph_client() -> GraphServiceClient:
    """Create an app-only Graph client from MS_GRAPH_* environment credentials."""
    tenant_id, client_id, client_secret = get_graph_credentials()

    credential = ClientSecretCredential(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret,
    )
    return GraphServiceClient(credentials=credential, scopes=GRAPH_SCOPES)
