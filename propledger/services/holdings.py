import logging

from propledger.errors import InvalidRequest, PropertyNotFound
from propledger.extensions import db, unit_of_work
from propledger.models import Holding, Property
from propledger.utils.money import ZERO, money

logger = logging.getLogger(__name__)


def get_holding(user_id, property_id, for_update=False):
    query = Holding.query.filter_by(user_id=user_id, property_id=property_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_or_create_holding(user_id, property_id, for_update=False):
    holding = get_holding(user_id, property_id, for_update=for_update)
    if holding is None:
        holding = Holding(
            user_id=user_id,
            property_id=property_id,
            quantity=0,
            average_cost=ZERO,
            total_invested=ZERO,
            rent_earned=ZERO,
        )
        db.session.add(holding)
        db.session.flush()
    return holding


def record_purchase(user_id, property_id, quantity, price=None):
    """Add purchased tokens to a holding at a weighted-average cost.

    Settlement of the purchase itself belongs to the buy flow; the ledger only
    keeps the position it produces.
    """
    if quantity <= 0:
        raise InvalidRequest("Quantity must be positive")
    with unit_of_work():
        prop = db.session.get(Property, property_id)
        if prop is None:
            raise PropertyNotFound(property_id=property_id)
        price = money(price if price is not None else prop.token_price)
        holding = get_or_create_holding(user_id, property_id, for_update=True)

        cost = money(price * quantity)
        new_quantity = holding.quantity + quantity
        new_invested = money(holding.total_invested or ZERO) + cost
        holding.quantity = new_quantity
        holding.total_invested = new_invested
        holding.average_cost = money(new_invested / new_quantity)
    logger.info("User %s bought %s tokens of property %s at %s", user_id, quantity, property_id, price)
    return holding
