ADMINA_ENDPOINT = 'https://api.itmc.i.moneyforward.com'
GRAPH_API_ENDPOINT = 'https://graph.microsoft.com/v1.0'
AUTHORITY_HOST_URI = 'https://login.microsoftonline.com'
MS_GRAPH_SCOPE = 'https://graph.microsoft.com/.default'

SSO_SERVICE_NAME = 'Single Sign-On'
CUSTOM_WORKSPACE_TYPE = 'manual_import'

CHUNK_SIZE = 3000
CONCURRENT_REQUESTS = 5
TOKEN_REFRESH_BUFFER_SEC = 600
API_TIMEOUT_SEC = 600
MAX_ITEMS_PER_PAGE = 999

MAX_RETRIES = 3
RETRY_DELAY = 1
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)

SSO_APP_TAGS = (
    'WindowsAzureActiveDirectoryIntegratedApp',
    'WindowsAzureActiveDirectoryCustomSingleSignOnApplication',
)
SSO_APP_TAG_PREFIXES = (
    'WindowsAzureActiveDirectoryGalleryApplication',
)
HIDDEN_APP_TAG = 'HideApp'

ODATA_USER_TYPE = '#microsoft.graph.user'
ODATA_GROUP_TYPE = '#microsoft.graph.group'
