"""
Corridor steering law.

Bang-bang rule with a dead band: the turtle turns one way when it gets past the upper
x bound, the other way when it drops below the lower bound, and drives straight in between.
Thresholds are strict, so a turtle sitting exactly on a bound drives straight.
"""
from turtlectl.messages import Pose, Twist, Vector3

UPPER_X_BOUND = 9.0
LOWER_X_BOUND = 2.0
TURN_RATE = 4.0
FORWARD_SPEED = 1.0


def angular_velocity(x : float) -> float:
    """ Turning rate about z for a turtle at position `x` """
    if x > UPPER_X_BOUND:
        return TURN_RATE
    elif x < LOWER_X_BOUND:
        return -TURN_RATE
    else:
        return 0.0


def velocity_command(pose : Pose, src : str, dst : str) -> Twist:
    """
    Computes the velocity command for a single pose sample.

    ### Arguments:
        - pose (:obj:`Pose`): latest pose of the controlled turtle
        - src (`str`): name of the node issuing the command
        - dst (`str`): topic the command will be published on

    ### Returns:
        - :obj:`Twist` with `linear.x = FORWARD_SPEED`, `angular.z` set by `angular_velocity(pose.x)` and every other component at zero
    """
    return Twist(src, dst,
                 linear=Vector3(x=FORWARD_SPEED, y=0.0),
                 angular=Vector3(z=angular_velocity(pose.x)))
