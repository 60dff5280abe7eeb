from fastapi import Request

from app.services.aggregator import ListingAggregator


def get_aggregator(request: Request) -> ListingAggregator:
    return request.app.state.aggregator
