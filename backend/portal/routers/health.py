from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
	database = request.app.state.database
	connected = database.is_open and database.ping()
	return {
		"success": True,
		"message": "Server is running",
		"data": {
			"timestamp": datetime.now(timezone.utc).isoformat(),
			"database": "Connected" if connected else "Disconnected",
		},
	}
