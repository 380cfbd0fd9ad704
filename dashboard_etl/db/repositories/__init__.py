from dashboard_etl.db.repositories.chat_messages import ChatMessagesRepository
from dashboard_etl.db.repositories.etl_runs import EtlRunsRepository
from dashboard_etl.db.repositories.records import RecordsRepository

__all__ = ["ChatMessagesRepository", "EtlRunsRepository", "RecordsRepository"]
