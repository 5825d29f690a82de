from order_customizations.db.repositories.customizations import OrderItemCustomizationsRepository
from order_customizations.db.repositories.orders import OrdersRepository
from order_customizations.db.repositories.rules import CustomizationRulesRepository, LayoutsRepository
from order_customizations.db.repositories.temp_files import TemporaryFilesRepository
