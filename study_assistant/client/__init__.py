from .poller import PollResult, StatusPoller, build_document_fetcher

__all__ = ['PollResult', 'StatusPoller', 'build_document_fetcher']
