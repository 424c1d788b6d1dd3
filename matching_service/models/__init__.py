from matching_service.models.match_models import (
    PreferencesModel, SearchRequestModel, ReadyToTalkModel, CallEventModel,
    WaitingUserModel, QueueStatusResponse, ReadyUserModel, HealthResponse
)
