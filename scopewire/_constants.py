import uuid

MIDDLEWARE_BOUNDARY = str(uuid.uuid4())
"""Process-unique identifier namespacing every key scopewire writes to shared state.

Two copies of scopewire loaded side by side each get their own boundary and never see each other's scopes.
"""

REQUEST_SCOPE_KEY = f"scopewire.request_scope:{MIDDLEWARE_BOUNDARY}"
INJECTOR_REGISTERED_KEY = f"scopewire.injector_registered:{MIDDLEWARE_BOUNDARY}"

REQUEST_SCOPE_TAG = "scopewire.request"
ROOT_SCOPE_TAG = "scopewire.root"

APP_DISPOSING_KEY = "host.on_app_disposing"
