"""
API Gateway Service package for the FIWARE Access Gateway.

The gateway fronts client requests, enforcing:
- Authentication: locally verified bearer tokens issued at login
- Session state: upstream Keyrock credentials kept server-side per user
- Token lifecycle: lazy expiry checks with refresh for renewable credentials
- Activity logging: every request classified, retained and streamed

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.sessions: Credential store and token lifecycle manager.
- app.adapters: HTTP clients for Keyrock and the IoT Agent.
- app.domain: Login orchestration, forwarding and the auth gate.
- app.activity: Activity event bus, classifier, middleware and SSE stream.
"""
