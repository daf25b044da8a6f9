import json
import uuid
from enum import Enum


class TransportMessageTypes(Enum):
    """
    Types of messages exchanged between the controller and the turtle environment.
        - pose: latest pose of a turtle, published on a `/<name>/pose` topic
        - twist: velocity command, published on a `/<name>/cmd_vel` topic
        - kill_req/kill_resp: removal service request and response
        - spawn_req/spawn_resp: creation service request and response
        - service_probe: checks whether a service is reachable
        - service_available: positive answer to a probe
        - service_error: negative answer to a probe or a failed service call
    """
    POSE = 'POSE'
    TWIST = 'TWIST'
    KILL_REQ = 'KILL_REQ'
    KILL_RESP = 'KILL_RESP'
    SPAWN_REQ = 'SPAWN_REQ'
    SPAWN_RESP = 'SPAWN_RESP'
    SERVICE_PROBE = 'SERVICE_PROBE'
    SERVICE_AVAILABLE = 'SERVICE_AVAILABLE'
    SERVICE_ERROR = 'SERVICE_ERROR'


class TransportMessage(object):
    """
    ## Abstract Transport Message

    Describes a message to be sent through the transport layer

    ### Attributes:
        - src (`str`): name of the node sending this message
        - dst (`str`): topic or service name this message is addressed to
        - msg_type (`str`): type of message being sent
        - id (`str`) : Universally Unique IDentifier for this message
    """
    def __init__(self, src : str, dst : str, msg_type : str, id : str = None):
        """
        Initiates an instance of a transport message.

        ### Args:
            - src (`str`): name of the node sending this message
            - dst (`str`): topic or service name this message is addressed to
            - msg_type (`str`): type of message being sent
            - id (`str`) : Universally Unique IDentifier for this message
        """
        super().__init__()

        # check types
        if not isinstance(src , str):
            raise TypeError(f'Message sender `src` must be of type `str`. Is of type {type(src)}')
        if not isinstance(dst , str):
            raise TypeError(f'Message receiver `dst` must be of type `str`. Is of type {type(dst)}')
        if not isinstance(msg_type , str):
            raise TypeError(f'Message type `msg_type` must be of type `str`. Is of type {type(msg_type)}')
        if id is not None and not isinstance(id , str):
            raise TypeError(f'Message id `id` must be of type `str`. Is of type {type(id)}')

        # load attributes from arguments
        self.src = src
        self.dst = dst
        self.msg_type = msg_type
        self.id = str(uuid.UUID(id)) if id is not None else str(uuid.uuid1())

    def __eq__(self, other) -> bool:
        """
        Compares two instances of a transport message. Returns True if they represent the same message.
        """
        if not isinstance(other, TransportMessage):
            return False
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict:
        """
        Crates a dictionary containing all information contained in this message object
        """
        return dict(self.__dict__)

    def to_json(self) -> str:
        """
        Creates a json string from this message
        """
        return json.dumps(self.to_dict())

    def __str__(self) -> str:
        return str(self.to_dict())


"""
-----------------
TOPIC MESSAGES
-----------------
"""
class Pose(TransportMessage):
    """
    ## Pose Message

    Latest reported pose of a turtle.

    ### Attributes:
        - x (`float`): position along the x-axis
        - y (`float`): position along the y-axis
        - theta (`float`): heading in [rad]
        - linear_velocity (`float`): forward speed reported by the environment
        - angular_velocity (`float`): turning rate reported by the environment
    """
    def __init__(self,
                 src : str,
                 dst : str,
                 x : float,
                 y : float,
                 theta : float,
                 linear_velocity : float = 0.0,
                 angular_velocity : float = 0.0,
                 id : str = None,
                 **_):
        super().__init__(src, dst, TransportMessageTypes.POSE.value, id)
        self.x = float(x)
        self.y = float(y)
        self.theta = float(theta)
        self.linear_velocity = float(linear_velocity)
        self.angular_velocity = float(angular_velocity)


class Vector3(object):
    """ Three-component vector used by velocity commands """
    def __init__(self, x : float = 0.0, y : float = 0.0, z : float = 0.0) -> None:
        self.x = float(x)
        self.y = float(y)
        self.z = float(z)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Vector3):
            return False
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict:
        return dict(self.__dict__)

    def __repr__(self) -> str:
        return f'Vector3(x={self.x}, y={self.y}, z={self.z})'


class Twist(TransportMessage):
    """
    ## Twist Message

    Velocity command applied to a turtle for its next simulation step.

    ### Attributes:
        - linear (:obj:`Vector3`): linear velocity; only `x` is used by the environment
        - angular (:obj:`Vector3`): angular velocity; only `z` is used by the environment
    """
    def __init__(self,
                 src : str,
                 dst : str,
                 linear = None,
                 angular = None,
                 id : str = None,
                 **_):
        super().__init__(src, dst, TransportMessageTypes.TWIST.value, id)
        self.linear = self.__to_vector(linear)
        self.angular = self.__to_vector(angular)

    @staticmethod
    def __to_vector(value) -> Vector3:
        if value is None:
            return Vector3()
        if isinstance(value, Vector3):
            return value
        if isinstance(value, dict):
            return Vector3(**value)
        raise TypeError(f'Twist components must be of type `Vector3` or `dict`. Is of type {type(value)}')

    def to_dict(self) -> dict:
        out = super().to_dict()
        out['linear'] = self.linear.to_dict()
        out['angular'] = self.angular.to_dict()
        return out


"""
-----------------
SERVICE MESSAGES
-----------------
"""
class KillRequest(TransportMessage):
    """ Asks the environment to remove the turtle named `name` """
    def __init__(self, src : str, dst : str, name : str, id : str = None, **_):
        super().__init__(src, dst, TransportMessageTypes.KILL_REQ.value, id)
        if not isinstance(name, str):
            raise TypeError(f'`name` must be of type `str`. Is of type {type(name)}')
        self.name = name


class KillResponse(TransportMessage):
    """ Empty acknowledgement of a removal """
    def __init__(self, src : str, dst : str, id : str = None, **_):
        super().__init__(src, dst, TransportMessageTypes.KILL_RESP.value, id)


class SpawnRequest(TransportMessage):
    """
    ## Spawn Request

    Asks the environment to create a turtle at a given pose.

    ### Attributes:
        - x (`float`), y (`float`), theta (`float`): initial pose of the new turtle
        - name (`str`): requested name. Left empty to let the environment pick one
    """
    def __init__(self,
                 src : str,
                 dst : str,
                 x : float,
                 y : float,
                 theta : float,
                 name : str = '',
                 id : str = None,
                 **_):
        super().__init__(src, dst, TransportMessageTypes.SPAWN_REQ.value, id)
        if not isinstance(name, str):
            raise TypeError(f'`name` must be of type `str`. Is of type {type(name)}')
        self.x = float(x)
        self.y = float(y)
        self.theta = float(theta)
        self.name = name


class SpawnResponse(TransportMessage):
    """ Name of the created turtle, possibly different from the requested one """
    def __init__(self, src : str, dst : str, name : str, id : str = None, **_):
        super().__init__(src, dst, TransportMessageTypes.SPAWN_RESP.value, id)
        self.name = name


class ServiceProbeMessage(TransportMessage):
    def __init__(self, src : str, dst : str, id : str = None, **_):
        super().__init__(src, dst, TransportMessageTypes.SERVICE_PROBE.value, id)


class ServiceAvailableMessage(TransportMessage):
    def __init__(self, src : str, dst : str, id : str = None, **_):
        super().__init__(src, dst, TransportMessageTypes.SERVICE_AVAILABLE.value, id)


class ServiceErrorMessage(TransportMessage):
    """
    ## Service Error Message

    Sent back by a service endpoint when a request could not be served.

    ### Attributes:
        - error (`str`): description of the failure
    """
    def __init__(self, src : str, dst : str, error : str, id : str = None, **_):
        super().__init__(src, dst, TransportMessageTypes.SERVICE_ERROR.value, id)
        self.error = error


_MESSAGE_CLASSES = {
    TransportMessageTypes.POSE.value : Pose,
    TransportMessageTypes.TWIST.value : Twist,
    TransportMessageTypes.KILL_REQ.value : KillRequest,
    TransportMessageTypes.KILL_RESP.value : KillResponse,
    TransportMessageTypes.SPAWN_REQ.value : SpawnRequest,
    TransportMessageTypes.SPAWN_RESP.value : SpawnResponse,
    TransportMessageTypes.SERVICE_PROBE.value : ServiceProbeMessage,
    TransportMessageTypes.SERVICE_AVAILABLE.value : ServiceAvailableMessage,
    TransportMessageTypes.SERVICE_ERROR.value : ServiceErrorMessage,
}

def message_from_dict(msg_type : str, **kwargs) -> TransportMessage:
    """
    Creates the appropriate message object from its dictionary representation
    """
    msg_class = _MESSAGE_CLASSES.get(msg_type, None)
    if msg_class is None:
        raise NotImplementedError(f'Message of type `{msg_type}` not yet supported.')
    return msg_class(**kwargs)
