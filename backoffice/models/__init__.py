from backoffice.models.user import User  # noqa: F401
from backoffice.models.client import Client  # noqa: F401
from backoffice.models.project import Project, ProjectMember, ProjectUrlHistory, Schedule  # noqa: F401
from backoffice.models.budget import Budget, Contract, Payment, GatewayEvent  # noqa: F401
from backoffice.models.evaluation import Evaluation  # noqa: F401
from backoffice.models.notification import Notification  # noqa: F401
from backoffice.models.activity_log import ActivityLog  # noqa: F401
