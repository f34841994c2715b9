from vgg_transfer.training.train import main

if __name__ == "__main__":
    main()
