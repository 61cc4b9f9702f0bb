from django.urls import path
from . import views

app_name = "stock"

urlpatterns = [
    path("materials/", views.MaterialListView.as_view(), name="material-list"),
    path("materials/bulk/", views.MaterialBulkCreateView.as_view(), name="material-bulk"),
    path("materials/low-stock/", views.MaterialLowStockView.as_view(), name="material-low-stock"),
    path("materials/out-of-stock/", views.MaterialOutOfStockView.as_view(), name="material-out-of-stock"),
    path("materials/categories/", views.MaterialCategoriesView.as_view(), name="material-categories"),
    path("materials/<int:material_id>/", views.MaterialDetailView.as_view(), name="material-detail"),
    path("materials/<int:material_id>/adjust/", views.MaterialAdjustStockView.as_view(), name="material-adjust"),
    path("materials/<int:material_id>/summary/", views.MaterialSummaryView.as_view(), name="material-summary"),

    path("transactions/", views.TransactionListView.as_view(), name="transaction-list"),
    path("transactions/order/<int:order_id>/", views.OrderTransactionsView.as_view(), name="transaction-order"),

    path("recipes/", views.RecipeListView.as_view(), name="recipe-list"),
    path("recipes/<int:recipe_id>/", views.RecipeDetailView.as_view(), name="recipe-detail"),
    path("recipes/<int:recipe_id>/activate/", views.RecipeActivateView.as_view(), name="recipe-activate"),
    path("recipes/<int:recipe_id>/deactivate/", views.RecipeDeactivateView.as_view(), name="recipe-deactivate"),
    path("recipes/<int:recipe_id>/clone/", views.RecipeCloneView.as_view(), name="recipe-clone"),
    path("recipes/<int:recipe_id>/cost/", views.RecipeCostView.as_view(), name="recipe-cost"),
    path("recipes/<int:recipe_id>/cost-breakdown/", views.RecipeCostBreakdownView.as_view(), name="recipe-cost-breakdown"),
    path("recipes/<int:recipe_id>/components/", views.RecipeComponentListView.as_view(), name="recipe-components"),
    path("recipes/<int:recipe_id>/max-producible/", views.RecipeMaxProducibleView.as_view(), name="recipe-max-producible"),
    path("recipes/<int:recipe_id>/sufficiency/", views.RecipeSufficiencyView.as_view(), name="recipe-sufficiency"),
    path("recipes/<int:recipe_id>/produce/", views.RecipeProduceView.as_view(), name="recipe-produce"),
    path("components/<int:component_id>/", views.RecipeComponentDetailView.as_view(), name="component-detail"),

    path("products/availability/", views.ProductAvailabilityListView.as_view(), name="product-availability-list"),
    path("products/<int:product_id>/availability/", views.ProductAvailabilityView.as_view(), name="product-availability"),
    path("products/<int:product_id>/feasibility/", views.ProductFeasibilityView.as_view(), name="product-feasibility"),
    path("products/<int:product_id>/requirements/", views.ProductRequirementsView.as_view(), name="product-requirements"),
    path("products/<int:product_id>/cost-estimate/", views.ProductCostEstimateView.as_view(), name="product-cost-estimate"),
    path("products/<int:product_id>/batch-requirements/", views.ProductBatchRequirementsView.as_view(), name="product-batch-requirements"),
    path("products/<int:product_id>/optimal-batch/", views.ProductOptimalBatchView.as_view(), name="product-optimal-batch"),
    path("products/<int:product_id>/simulate/", views.ProductSimulateView.as_view(), name="product-simulate"),
    path("products/<int:product_id>/capacity-forecast/", views.ProductCapacityForecastView.as_view(), name="product-capacity-forecast"),

    path("batch/plan/", views.BatchPlanView.as_view(), name="batch-plan"),

    path("alerts/low-stock-in-recipes/", views.LowStockInActiveRecipesView.as_view(), name="low-stock-in-recipes"),
]
